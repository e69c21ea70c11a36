"""
PROTRAIN CRM - Billing Record Store

Acces lecture / mise a jour partielle aux documents billing_records pour le
scheduler. La creation / suppression restent dans le CRUD billing.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Any

from config import db as default_db, BILLING_COLLECTION, now_iso

logger = logging.getLogger("billing_records")

# Borne haute d'un sweep (to_list)
MAX_RECORDS_PER_SWEEP = 10000


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


class BillingRecordStore:

    def __init__(self, database=None, collection_name: str = BILLING_COLLECTION):
        database = database if database is not None else default_db
        self.collection = database[collection_name]

    async def list_all(self) -> List[Dict]:
        """Snapshot of every record, taken once at sweep start"""
        return await self.collection.find({}, {"_id": 0}).to_list(MAX_RECORDS_PER_SWEEP)

    async def get(self, record_id: str) -> Optional[Dict]:
        return await self.collection.find_one({"id": record_id}, {"_id": 0})

    async def update_anchor(self, record_id: str, anchor: date, anchor_day: int):
        await self.collection.update_one(
            {"id": record_id},
            {"$set": {"anchorDate": anchor.isoformat(), "anchorDay": anchor_day, "updatedAt": now_iso()}}
        )

    async def commit_sent(
        self,
        record_id: str,
        today: date,
        occurrence: date,
        next_anchor: Optional[date] = None,
        anchor_day: Optional[int] = None,
    ):
        """Envoi reussi: marque l'occurrence notifiee (+ avance l'ancre si jour J)"""
        fields: Dict[str, Any] = {
            "lastNotifiedDate": _iso(today),
            "lastNotifiedOccurrence": _iso(occurrence),
            "lastNotificationStatus": "sent",
            "lastNotificationError": None,
            "lastNotificationAt": now_iso(),
        }
        if next_anchor is not None:
            fields["anchorDate"] = _iso(next_anchor)
            fields["anchorDay"] = anchor_day or next_anchor.day

        await self.collection.update_one(
            {"id": record_id},
            {"$set": fields, "$inc": {"notificationsSentCount": 1}}
        )

    async def commit_failed(self, record_id: str, error: str):
        """
        Echec: lastNotifiedDate / lastNotifiedOccurrence NE SONT PAS touches,
        le record reste eligible au prochain sweep.
        """
        await self.collection.update_one(
            {"id": record_id},
            {
                "$set": {
                    "lastNotificationStatus": "failed",
                    "lastNotificationError": error[:500],
                    "lastNotificationAt": now_iso(),
                },
                "$inc": {"notificationsSentCount": 1},
            }
        )
