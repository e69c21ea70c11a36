"""
PROTRAIN CRM - Scheduler State

Collection: scheduler_state (chaque doc identifie par key)

- billing_trigger: {lastSweepDate, triggerTime, lastResult}
  Remplace le flag global "deja execute aujourd'hui": survit aux redemarrages
  et reste lisible sans effet de bord (dry-run, /scheduler/status).
- billing_sweep_lock: bail {holder, acquired_at, expires_at}
  Un seul sweep reel a la fois meme avec plusieurs replicas.
  Renouvele pendant le sweep (tous les TTL/3).
  Reservation atomique (find_one_and_update) + index unique sur key.
"""

import logging
import os
import socket
import uuid
from datetime import date, datetime, timezone, timedelta
from typing import Dict, Optional

from pymongo.errors import DuplicateKeyError

from config import db as default_db, now_iso, SWEEP_LOCK_TTL_SECONDS

logger = logging.getLogger("scheduler_state")

TRIGGER_STATE_KEY = "billing_trigger"
SWEEP_LOCK_KEY = "billing_sweep_lock"


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class SchedulerStateStore:

    def __init__(self, database=None, lock_ttl_seconds: int = SWEEP_LOCK_TTL_SECONDS, instance_id: Optional[str] = None):
        database = database if database is not None else default_db
        self.collection = database.scheduler_state
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds)
        self.instance_id = instance_id or default_instance_id()

    async def ensure_indexes(self):
        await self.collection.create_index("key", unique=True)

    # ---- Trigger state ----

    async def get_trigger_state(self) -> Dict:
        doc = await self.collection.find_one({"key": TRIGGER_STATE_KEY}, {"_id": 0})
        return doc or {"key": TRIGGER_STATE_KEY, "lastSweepDate": None, "triggerTime": None}

    async def mark_swept(self, today: date, trigger_time: str):
        """Ecrit AVANT le sweep: borne a un sweep automatique par jour"""
        await self.collection.update_one(
            {"key": TRIGGER_STATE_KEY},
            {"$set": {
                "lastSweepDate": today.isoformat(),
                "triggerTime": trigger_time,
                "updated_at": now_iso(),
            }},
            upsert=True,
        )

    async def reset_trigger(self, trigger_time: str):
        """triggerTime modifie: le marqueur du jour est efface"""
        await self.collection.update_one(
            {"key": TRIGGER_STATE_KEY},
            {"$set": {
                "lastSweepDate": None,
                "triggerTime": trigger_time,
                "updated_at": now_iso(),
            }},
            upsert=True,
        )

    async def record_last_result(self, summary: Dict):
        await self.collection.update_one(
            {"key": TRIGGER_STATE_KEY},
            {"$set": {"lastResult": summary, "updated_at": now_iso()}},
            upsert=True,
        )

    # ---- Lease lock ----

    async def acquire_lock(self) -> bool:
        now = datetime.now(timezone.utc)
        lease = {
            "holder": self.instance_id,
            "acquired_at": now.isoformat(),
            "expires_at": (now + self.lock_ttl).isoformat(),
        }

        # Bail expire ou deja detenu par cette instance
        taken = await self.collection.find_one_and_update(
            {
                "key": SWEEP_LOCK_KEY,
                "$or": [
                    {"expires_at": {"$lte": now.isoformat()}},
                    {"holder": self.instance_id},
                ],
            },
            {"$set": lease},
        )
        if taken:
            return True

        try:
            await self.collection.insert_one({"key": SWEEP_LOCK_KEY, **lease})
            return True
        except DuplicateKeyError:
            holder = await self.collection.find_one({"key": SWEEP_LOCK_KEY}, {"_id": 0})
            logger.warning(
                f"[SWEEP_LOCK] Held by {holder.get('holder') if holder else '?'} "
                f"until {holder.get('expires_at') if holder else '?'}"
            )
            return False

    async def renew_lock(self) -> bool:
        """Prolonge le bail pendant un sweep long. False si le bail a ete perdu."""
        now = datetime.now(timezone.utc)
        renewed = await self.collection.find_one_and_update(
            {"key": SWEEP_LOCK_KEY, "holder": self.instance_id},
            {"$set": {"expires_at": (now + self.lock_ttl).isoformat()}},
        )
        return renewed is not None

    async def release_lock(self):
        await self.collection.delete_one({"key": SWEEP_LOCK_KEY, "holder": self.instance_id})
