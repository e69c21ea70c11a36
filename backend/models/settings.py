"""
PROTRAIN CRM - Notification settings models

Singleton document, camelCase on the wire and in Mongo.
"""

import re
from datetime import time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TRIGGER_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def is_valid_email_format(email: str) -> bool:
    """Vérifie le format email basique"""
    if not email:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


class Recipient(BaseModel):
    email: str
    active: bool = True

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not is_valid_email_format(v):
            raise ValueError(f"Invalid email format: {v}")
        return v


class NotificationSettings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    recipients: List[Recipient] = []
    advance_enabled: bool = True
    advance_days: int = Field(7, ge=0)
    on_due_date_enabled: bool = True
    trigger_time: str = "09:00"
    send_to_admins: bool = False
    email_template: Optional[str] = ""

    @field_validator('recipients', mode='before')
    @classmethod
    def ensure_list(cls, v):
        return v if isinstance(v, list) else []

    @field_validator('trigger_time')
    @classmethod
    def validate_trigger_time(cls, v):
        v = v.strip()
        if not TRIGGER_TIME_PATTERN.match(v):
            raise ValueError(f"triggerTime must be HH:MM, got {v!r}")
        return v

    @property
    def trigger_clock(self) -> time:
        hours, minutes = self.trigger_time.split(":")
        return time(int(hours), int(minutes))

    def active_recipients(self) -> List[str]:
        """Active explicit recipients, order kept, duplicates dropped"""
        seen = []
        for r in self.recipients:
            if r.active and r.email not in seen:
                seen.append(r.email)
        return seen

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class EmailTestRequest(BaseModel):
    email: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        if not is_valid_email_format(v.strip()):
            raise ValueError(f"Invalid email format: {v}")
        return v.strip()
