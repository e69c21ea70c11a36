"""
PROTRAIN CRM - In-app notifications

Une entree par destinataire, lue par l'inbox du frontend.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from config import db as default_db, NOTIFICATIONS_COLLECTION, now_iso

logger = logging.getLogger("notifications")


class NotificationService:

    def __init__(self, database=None, collection_name: str = NOTIFICATIONS_COLLECTION):
        database = database if database is not None else default_db
        self.collection = database[collection_name]

    async def create(
        self,
        to_email: str,
        title: str,
        body: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict:
        doc = {
            "id": str(uuid.uuid4()),
            "toEmail": to_email,
            "title": title,
            "body": body or "",
            "data": data,
            "read": False,
            "createdAt": now_iso(),
        }
        await self.collection.insert_one(doc)
        doc.pop("_id", None)
        return doc

    async def find_for_email(self, email: str, limit: int = 50) -> List[Dict]:
        return await self.collection.find(
            {"toEmail": email},
            {"_id": 0}
        ).sort("createdAt", -1).limit(limit).to_list(limit)

    async def mark_read(self, notification_id: str, email: Optional[str] = None) -> bool:
        """False si la notification n'existe pas (ou n'appartient pas a email)"""
        query = {"id": notification_id}
        if email:
            query["toEmail"] = email
        result = await self.collection.update_one(
            query,
            {"$set": {"read": True, "readAt": now_iso()}}
        )
        return result.matched_count > 0


# Instance globale
notification_service = NotificationService()


def get_notification_service() -> NotificationService:
    return notification_service
