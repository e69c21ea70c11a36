"""
Configuration et utilitaires partagés
"""

import os
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'protrain_crm')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Toutes les comparaisons de dates ("today", jour du mois) se font dans cette zone
REFERENCE_TIMEZONE = os.environ.get('REFERENCE_TIMEZONE', 'Asia/Bangkok')

# Scheduler
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() in ('1', 'true', 'yes')
SCHEDULER_TICK_SECONDS = int(os.environ.get('SCHEDULER_TICK_SECONDS', '60'))
DISPATCH_TIMEOUT_SECONDS = float(os.environ.get('DISPATCH_TIMEOUT_SECONDS', '30'))
SWEEP_LOCK_TTL_SECONDS = int(os.environ.get('SWEEP_LOCK_TTL_SECONDS', '900'))

# Collections
BILLING_COLLECTION = os.environ.get('BILLING_COLLECTION', 'billing_records')
NOTIFICATIONS_COLLECTION = os.environ.get('NOTIFICATIONS_COLLECTION', 'notifications')
USERS_COLLECTION = os.environ.get('USERS_COLLECTION', 'users')

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== HELPERS ====================

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()
