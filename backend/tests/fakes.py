"""
In-memory stand-ins for the Motor database and the SendGrid email service.

Only the subset of the Motor API the billing scheduler uses is covered:
find / find_one / insert_one / update_one / find_one_and_update / delete_one /
create_index, with equality, $in, $lt, $lte, $gt, $gte, $ne and $or filters.
"""

import copy
import time
import uuid
from datetime import datetime
from types import SimpleNamespace

from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from services.billing_records import BillingRecordStore
from services.billing_scheduler import BillingScheduler
from services.clock import FixedClock
from services.notification_settings import NotificationSettingsService
from services.notifications import NotificationService
from services.reminder_dispatcher import ReminderDispatcher
from services.scheduler_state import SchedulerStateStore

COMPARATORS = {
    "$lt": lambda a, b: a < b,
    "$lte": lambda a, b: a <= b,
    "$gt": lambda a, b: a > b,
    "$gte": lambda a, b: a >= b,
}


def _match_condition(value, condition) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in":
                if value not in operand:
                    return False
            elif op == "$ne":
                if value == operand:
                    return False
            elif op in COMPARATORS:
                if value is None or not COMPARATORS[op](value, operand):
                    return False
            else:
                raise NotImplementedError(f"Operator {op} not supported by FakeCollection")
        return True
    return value == condition


def matches(doc: dict, query: dict) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(doc.get(key), condition):
            return False
    return True


def project(doc: dict, projection: dict = None) -> dict:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        result = {k: doc[k] for k in included if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        return result
    for key, value in projection.items():
        if not value:
            doc.pop(key, None)
    return doc


class FakeCursor:

    def __init__(self, docs):
        self._docs = docs
        self._limit = None

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: (d.get(key) is not None, d.get(key)), reverse=direction < 0)
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        bounds = [x for x in (self._limit, length) if x]
        return self._docs[:min(bounds)] if bounds else list(self._docs)


class FakeCollection:

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique_fields = set()
        self.failing = set()

    # ---- test helpers ----

    def seed(self, *docs):
        for doc in docs:
            self.docs.append(copy.deepcopy(doc))

    def fail(self, *methods):
        """Make the named methods raise like an unreachable server"""
        self.failing.update(methods)

    def by(self, field, value):
        return next((d for d in self.docs if d.get(field) == value), None)

    def _check(self, method):
        if method in self.failing:
            raise ServerSelectionTimeoutError(f"{self.name}.{method}: server unreachable")

    # ---- Motor API ----

    async def create_index(self, keys, unique=False, **kwargs):
        self._check("create_index")
        if unique and isinstance(keys, str):
            self.unique_fields.add(keys)
        return keys

    def find(self, query=None, projection=None):
        self._check("find")
        return FakeCursor([project(d, projection) for d in self.docs if matches(d, query)])

    async def find_one(self, query=None, projection=None):
        self._check("find_one")
        for doc in self.docs:
            if matches(doc, query):
                return project(doc, projection)
        return None

    async def insert_one(self, doc):
        self._check("insert_one")
        for field in self.unique_fields:
            if field in doc and any(d.get(field) == doc[field] for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} {field}", 11000)
        doc.setdefault("_id", uuid.uuid4().hex)
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"], acknowledged=True)

    def _apply(self, doc, update, inserting=False):
        for key, value in update.get("$set", {}).items():
            doc[key] = copy.deepcopy(value)
        for key, value in update.get("$inc", {}).items():
            doc[key] = (doc.get(key) or 0) + value
        for key in update.get("$unset", {}):
            doc.pop(key, None)
        if inserting:
            for key, value in update.get("$setOnInsert", {}).items():
                doc[key] = copy.deepcopy(value)

    def _upsert(self, query, update):
        doc = {k: v for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
        self._apply(doc, update, inserting=True)
        doc["_id"] = uuid.uuid4().hex
        self.docs.append(doc)
        return doc

    async def update_one(self, query, update, upsert=False):
        self._check("update_one")
        for doc in self.docs:
            if matches(doc, query):
                self._apply(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            doc = self._upsert(query, update)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def find_one_and_update(self, query, update, projection=None, upsert=False, return_document=False):
        self._check("find_one_and_update")
        for doc in self.docs:
            if matches(doc, query):
                before = project(doc, projection)
                self._apply(doc, update)
                return project(doc, projection) if return_document else before
        if upsert:
            doc = self._upsert(query, update)
            return project(doc, projection) if return_document else None
        return None

    async def delete_one(self, query):
        self._check("delete_one")
        for i, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class FakeDatabase:

    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


class FakeEmailService:
    """
    Records every billing reminder instead of calling SendGrid.
    result: True / False returned by send_billing_reminder
    raises: exception raised instead of sending
    delay: seconds slept (blocking, the dispatcher runs us in a thread)
    """

    def __init__(self, result=True, raises=None, delay=0):
        self.result = result
        self.raises = raises
        self.delay = delay
        self.sent = []
        self.test_emails = []

    def send_billing_reminder(self, recipients, context, custom_template=None):
        if self.delay:
            time.sleep(self.delay)
        if self.raises:
            raise self.raises
        self.sent.append({"recipients": list(recipients), "context": context, "template": custom_template})
        return self.result

    def send_test_email(self, to_email):
        self.test_emails.append(to_email)
        return self.result


class UnavailableSettingsService(NotificationSettingsService):
    """Settings store that never answers"""

    def __init__(self, database):
        super().__init__(database)
        database.settings.fail("find_one", "update_one")


def billing_record(record_id, anchor, interval=1, **fields):
    doc = {
        "id": record_id,
        "anchorDate": anchor,
        "intervalMonths": interval,
        "companyName": fields.pop("company_name", f"Company {record_id}"),
        "companyId": fields.pop("company_id", f"company-{record_id}"),
        "amountDue": fields.pop("amount_due", 1500.0),
        "notificationsSentCount": 0,
    }
    doc.update(fields)
    return doc


def notification_settings_doc(**overrides):
    doc = {
        "key": "notification_settings",
        "recipients": [{"email": "billing@protrain.test", "active": True}],
        "advanceEnabled": True,
        "advanceDays": 7,
        "onDueDateEnabled": True,
        "triggerTime": "09:00",
        "sendToAdmins": False,
        "emailTemplate": "",
    }
    doc.update(overrides)
    return doc


def build_scheduler(now=datetime(2024, 3, 15, 10, 0), email=None, db=None, timeout=5, instance_id="test-instance"):
    """Wire a BillingScheduler on a fresh FakeDatabase with a frozen clock"""
    db = db if db is not None else FakeDatabase()
    db.scheduler_state.unique_fields.add("key")
    email = email if email is not None else FakeEmailService()
    clock = FixedClock(now)
    settings = NotificationSettingsService(db)
    dispatcher = ReminderDispatcher(email=email, notifications=NotificationService(db), timeout=timeout)
    state = SchedulerStateStore(db, instance_id=instance_id)
    scheduler = BillingScheduler(
        store=BillingRecordStore(db),
        settings_service=settings,
        dispatcher=dispatcher,
        state=state,
        clock=clock,
        database=db,
    )
    return SimpleNamespace(db=db, email=email, clock=clock, settings=settings, state=state, scheduler=scheduler)
