"""
PROTRAIN CRM - Service Notification Settings

Parametres des rappels de facturation recurrente.
Collection: settings (chaque doc identifie par key)

- notification_settings: destinataires, rappel anticipe (advanceDays),
  rappel le jour J, heure de declenchement quotidienne, envoi aux admins

Le document est cree avec les valeurs par defaut a la premiere lecture et
n'est remplace que par update_settings().
"""

import logging
from typing import Dict, Any, List, Optional

from pymongo.errors import PyMongoError
from pydantic import ValidationError

from config import db as default_db, now_iso, USERS_COLLECTION
from models.settings import NotificationSettings

logger = logging.getLogger("notification_settings")

SETTINGS_KEY = "notification_settings"
ADMIN_ROLES = ["admin", "superadmin"]

DEFAULT_NOTIFICATION_SETTINGS = NotificationSettings().to_document()


class SettingsUnavailableError(Exception):
    """Settings could not be read; a sweep has nothing safe to do."""
    pass


class NotificationSettingsService:
    """Settings provider consumed by the billing scheduler and the admin routes"""

    def __init__(self, database=None):
        self.db = database if database is not None else default_db

    async def get_setting(self, key: str) -> Optional[Dict]:
        """Recupere un setting par sa cle"""
        return await self.db.settings.find_one({"key": key}, {"_id": 0})

    async def upsert_setting(self, key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
        """Cree ou met a jour un setting"""
        data["key"] = key
        data["updated_at"] = now_iso()
        data["updated_by"] = updated_by

        await self.db.settings.update_one(
            {"key": key},
            {"$set": data, "$setOnInsert": {"created_at": now_iso()}},
            upsert=True,
        )
        return await self.db.settings.find_one({"key": key}, {"_id": 0})

    async def get_settings(self) -> NotificationSettings:
        """
        Settings courants (merge avec defaults).
        Premiere lecture: le document est cree avec les defaults.
        Raises SettingsUnavailableError si la base ne repond pas ou si le
        document stocke est invalide.
        """
        try:
            doc = await self.get_setting(SETTINGS_KEY)
            if not doc:
                logger.info("[SETTINGS] No notification settings yet, creating defaults")
                doc = await self.upsert_setting(SETTINGS_KEY, dict(DEFAULT_NOTIFICATION_SETTINGS))
        except PyMongoError as e:
            raise SettingsUnavailableError(f"Settings store unreachable: {e}") from e

        try:
            return NotificationSettings.model_validate({**DEFAULT_NOTIFICATION_SETTINGS, **doc})
        except ValidationError as e:
            raise SettingsUnavailableError(f"Stored notification settings are invalid: {e}") from e

    async def update_settings(self, settings: NotificationSettings, updated_by: str = "system") -> NotificationSettings:
        """Remplace les settings (seul point de mutation)"""
        await self.upsert_setting(SETTINGS_KEY, settings.to_document(), updated_by)
        logger.info(f"[SETTINGS] Notification settings updated by {updated_by}")
        return await self.get_settings()

    async def get_admin_emails(self) -> List[str]:
        """Emails de tous les comptes admin / superadmin"""
        users = await self.db[USERS_COLLECTION].find(
            {"role": {"$in": ADMIN_ROLES}},
            {"_id": 0, "email": 1}
        ).to_list(1000)
        emails = [u["email"].strip().lower() for u in users if isinstance(u.get("email"), str) and u["email"].strip()]
        logger.info(f"[SETTINGS] Found {len(emails)} admin/superadmin emails")
        return emails

    async def get_all_recipients(self, settings: Optional[NotificationSettings] = None) -> List[str]:
        """
        Union ordonnee: destinataires actifs explicites, puis admins si
        sendToAdmins. Un echec de lecture des admins ne bloque pas les
        destinataires explicites.
        """
        if settings is None:
            settings = await self.get_settings()

        recipients = settings.active_recipients()

        if settings.send_to_admins:
            try:
                admin_emails = await self.get_admin_emails()
            except PyMongoError as e:
                logger.error(f"[SETTINGS] Error fetching admin emails: {e}")
                admin_emails = []
            for email in admin_emails:
                if email not in recipients:
                    recipients.append(email)

        return recipients


# Instance globale
notification_settings_service = NotificationSettingsService()


def get_notification_settings_service() -> NotificationSettingsService:
    return notification_settings_service
