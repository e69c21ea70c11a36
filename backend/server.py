"""
Protrain CRM - Billing notifications API

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import client, db, CORS_ORIGINS, SCHEDULER_ENABLED, BILLING_COLLECTION, NOTIFICATIONS_COLLECTION

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("protrain")

# Créer l'app
app = FastAPI(
    title="Protrain CRM",
    description="Rappels de facturation recurrente",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== IMPORT DES ROUTES ====================

from routes import scheduler, notification_settings, notifications
from scheduler_service import task_scheduler, billing_scheduler

# Routes avec préfixe /api
app.include_router(scheduler.router, prefix="/api")
app.include_router(notification_settings.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Protrain CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info("🚀 Protrain CRM démarré")

    await db[BILLING_COLLECTION].create_index("id", unique=True)
    await db[NOTIFICATIONS_COLLECTION].create_index([("toEmail", 1), ("createdAt", -1)])
    await db.settings.create_index("key", unique=True)
    await db.sessions.create_index("token")
    await db.event_log.create_index("created_at")
    await billing_scheduler.state.ensure_indexes()

    logger.info("✅ Index MongoDB créés")

    if SCHEDULER_ENABLED:
        task_scheduler.start()
    else:
        logger.info("Scheduler désactivé (SCHEDULER_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown():
    task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
