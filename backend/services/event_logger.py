"""
PROTRAIN CRM - Event Logger

Audit trail for scheduler runs and settings changes.
Single function to call from any route/service.
"""

import uuid
from config import db as default_db, now_iso


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    database=None,
):
    """
    Write a single event to the event_log collection.

    Args:
        action: billing_sweep | billing_send_now | settings_update
        entity_type: scheduler | billing_record | settings
        entity_id: sweep day, record id or settings key
        user: email of the operator ("system" for the daily tick)
        details: free-form dict (sweep summary, outcome, ...)
    """
    database = database if database is not None else default_db
    event_id = str(uuid.uuid4())
    await database.event_log.insert_one({
        "id": event_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "created_at": now_iso()
    })
    return event_id
