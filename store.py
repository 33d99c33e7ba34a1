# ----------------- Expense Store -----------------
"""
Storage collaborators for expense records.

Every store exposes the same narrow interface:
    connect() / close()
    state                      -> ConnectionState
    on_state_change(callback)  -> callback(old_state, new_state)
    add_expense(record)
    find_expenses(sender_id=None, since=None, until=None)
    totals_by_category(sender_id=None, since=None, until=None)

Backends:
    memory://                  MemoryExpenseStore (process local)
    json://path/expenses.json  JsonExpenseStore
    mongodb://... / mongodb+srv://...  MongoExpenseStore
"""
import enum
import hashlib
import json
import logging
import math
import os
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from bson.decimal128 import Decimal128
from pymongo import ASCENDING, MongoClient, monitoring
from pymongo.errors import ConnectionFailure, PyMongoError

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
# twelve integer digits, the same cap as the expense command
MAX_AMOUNT = Decimal("999999999999.99")


class StoreUnavailableError(Exception):
    """The storage backend could not be reached."""


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


# ---------------- RECORD ----------------
def utcnow():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ExpenseRecord:
    amount: Decimal
    category: str
    date: datetime = field(default_factory=utcnow)
    sender_id: Optional[str] = None

    def __post_init__(self):
        try:
            amount = Decimal(str(self.amount))
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {self.amount!r}")
        if not amount.is_finite() or amount < 0 or amount > MAX_AMOUNT:
            raise ValueError(f"Amount must be between 0 and {MAX_AMOUNT}: {self.amount!r}")
        category = (self.category or "").strip()
        if not category:
            raise ValueError("Category must not be empty")

        object.__setattr__(self, "amount", amount.quantize(CENTS, rounding=ROUND_HALF_UP))
        object.__setattr__(self, "category", category)
        if self.date.tzinfo is None:
            object.__setattr__(self, "date", self.date.replace(tzinfo=timezone.utc))
        if self.sender_id is not None:
            object.__setattr__(self, "sender_id", str(self.sender_id))

    @property
    def category_key(self):
        return self.category.lower()


def in_range(record, sender_id=None, since=None, until=None):
    if sender_id is not None and record.sender_id != str(sender_id):
        return False
    if since is not None and record.date < since:
        return False
    if until is not None and record.date >= until:
        return False
    return True


# ---------------- BASE ----------------
class ExpenseStore:
    """Connection-state bookkeeping shared by all backends."""

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._listeners = []
        self._state_lock = threading.Lock()

    @property
    def state(self):
        return self._state

    @property
    def is_connected(self):
        return self._state is ConnectionState.CONNECTED

    def on_state_change(self, callback):
        self._listeners.append(callback)
        return callback

    def _set_state(self, new_state):
        with self._state_lock:
            old_state = self._state
            if old_state is new_state:
                return
            self._state = new_state

        if new_state is ConnectionState.CONNECTED:
            logger.info("Store %s is now connected", type(self).__name__)
        elif new_state is ConnectionState.DISCONNECTED:
            logger.warning("Store %s is disconnected", type(self).__name__)

        for callback in list(self._listeners):
            try:
                callback(old_state, new_state)
            except Exception:
                logger.exception("Connection state listener failed")

    def connect(self):
        raise NotImplementedError

    def close(self):
        self._set_state(ConnectionState.DISCONNECTED)

    def add_expense(self, record):
        raise NotImplementedError

    def find_expenses(self, sender_id=None, since=None, until=None):
        raise NotImplementedError

    def totals_by_category(self, sender_id=None, since=None, until=None):
        totals = defaultdict(Decimal)
        for record in self.find_expenses(sender_id, since, until):
            totals[record.category_key] += record.amount
        return {name: totals[name] for name in sorted(totals)}


# ---------------- MEMORY ----------------
class MemoryExpenseStore(ExpenseStore):
    def __init__(self, records=None):
        super().__init__()
        self._records = list(records or [])
        self._lock = threading.Lock()

    def connect(self):
        self._set_state(ConnectionState.CONNECTED)
        return self

    def add_expense(self, record):
        with self._lock:
            self._records.append(record)
        return record

    def find_expenses(self, sender_id=None, since=None, until=None):
        with self._lock:
            records = list(self._records)
        found = [r for r in records if in_range(r, sender_id, since, until)]
        return sorted(found, key=lambda r: r.date)


# ---------------- JSON FILE ----------------
def record_id(record):
    hash_input = f"{record.sender_id}{record.amount}{record.category}{record.date.isoformat()}"
    return f"exp{record.sender_id or ''}{hashlib.md5(hash_input.encode()).hexdigest()}"


def record_to_json(record):
    return {
        "id": record_id(record),
        "user_id": record.sender_id,
        "type": "expense",
        "amount": str(record.amount),
        "category": record.category,
        "timestamp": record.date.isoformat(),
    }


def record_from_json(item):
    return ExpenseRecord(
        amount=Decimal(str(item["amount"])),
        category=item["category"],
        date=datetime.fromisoformat(item["timestamp"]),
        sender_id=item.get("user_id"),
    )


class JsonExpenseStore(ExpenseStore):
    """Keeps every expense in a single JSON document: {"transactions": [...]}."""

    def __init__(self, path):
        super().__init__()
        self.path = path
        self._lock = threading.Lock()

    def load_json(self):
        if not os.path.exists(self.path):
            return {"transactions": []}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        data.setdefault("transactions", [])
        return data

    def save_json(self, data):
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    def connect(self):
        self._set_state(ConnectionState.CONNECTING)
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            with self._lock:
                if not os.path.exists(self.path):
                    self.save_json({"transactions": []})
                else:
                    self.load_json()
        except (OSError, ValueError):
            logger.exception("Could not open expense file %s", self.path)
            self._set_state(ConnectionState.DISCONNECTED)
            return self
        self._set_state(ConnectionState.CONNECTED)
        return self

    def add_expense(self, record):
        try:
            with self._lock:
                data = self.load_json()
                data["transactions"].append(record_to_json(record))
                self.save_json(data)
        except OSError as e:
            raise StoreUnavailableError(str(e)) from e
        return record

    def find_expenses(self, sender_id=None, since=None, until=None):
        try:
            with self._lock:
                data = self.load_json()
        except OSError as e:
            raise StoreUnavailableError(str(e)) from e

        records = [
            record_from_json(item)
            for item in data["transactions"]
            if item.get("type", "expense") == "expense"
        ]
        found = [r for r in records if in_range(r, sender_id, since, until)]
        return sorted(found, key=lambda r: r.date)


# ---------------- MONGODB ----------------
class HeartbeatStateListener(monitoring.ServerHeartbeatListener):
    """Feeds pymongo server heartbeats into the store connection state."""

    def __init__(self, store):
        self.store = store

    def started(self, event):
        pass

    def succeeded(self, event):
        self.store._set_state(ConnectionState.CONNECTED)

    def failed(self, event):
        logger.warning("MongoDB heartbeat to %s failed: %s", event.connection_id, event.reply)
        self.store._set_state(ConnectionState.DISCONNECTED)


def record_to_document(record):
    return {
        "amount": Decimal128(record.amount),
        "category": record.category,
        "date": record.date,
        "sender_id": record.sender_id,
    }


def to_decimal(value):
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Invalid stored amount: {value!r}")
        return Decimal(str(value))
    return Decimal(value)


def record_from_document(doc):
    return ExpenseRecord(
        amount=to_decimal(doc["amount"]),
        category=doc["category"],
        date=doc.get("date") or utcnow(),
        sender_id=doc.get("sender_id"),
    )


def build_query(sender_id=None, since=None, until=None):
    query = {}
    if sender_id is not None:
        query["sender_id"] = str(sender_id)
    if since is not None or until is not None:
        query["date"] = {}
        if since is not None:
            query["date"]["$gte"] = since
        if until is not None:
            query["date"]["$lt"] = until
    return query


class MongoExpenseStore(ExpenseStore):
    COLLECTION = "expenses"

    def __init__(self, uri=None, db_name="gastos", timeout_ms=5000, collection=None):
        super().__init__()
        self.uri = uri
        self.db_name = db_name
        self.timeout_ms = timeout_ms
        self._client = None
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            raise StoreUnavailableError("MongoDB not initialized. Call connect first.")
        return self._collection

    def connect(self):
        self._set_state(ConnectionState.CONNECTING)
        if self._collection is not None and self.uri is None:
            self._set_state(ConnectionState.CONNECTED)
            return self

        self._client = MongoClient(
            self.uri,
            serverSelectionTimeoutMS=self.timeout_ms,
            tz_aware=True,
            event_listeners=[HeartbeatStateListener(self)],
        )
        db = self._client.get_default_database(default=self.db_name)
        self._collection = db[self.COLLECTION]
        logger.info("MongoDB database: %s", db.name)

        try:
            self._client.admin.command("ping")
            self._collection.create_index([("sender_id", ASCENDING), ("date", ASCENDING)])
        except PyMongoError as e:
            logger.warning("MongoDB not reachable yet: %s", e)
            self._set_state(ConnectionState.DISCONNECTED)
            return self
        self._set_state(ConnectionState.CONNECTED)
        return self

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None
        super().close()

    def add_expense(self, record):
        try:
            self.collection.insert_one(record_to_document(record))
        except ConnectionFailure as e:
            raise StoreUnavailableError(str(e)) from e
        return record

    def find_expenses(self, sender_id=None, since=None, until=None):
        query = build_query(sender_id, since, until)
        try:
            docs = list(self.collection.find(query).sort("date", ASCENDING))
        except ConnectionFailure as e:
            raise StoreUnavailableError(str(e)) from e
        return [record_from_document(doc) for doc in docs]

    def totals_by_category(self, sender_id=None, since=None, until=None):
        # $toLower only folds ASCII, so case is folded here with str.lower()
        pipeline = [
            {"$match": build_query(sender_id, since, until)},
            {"$group": {"_id": "$category", "total": {"$sum": "$amount"}}},
        ]
        try:
            rows = list(self.collection.aggregate(pipeline))
        except ConnectionFailure as e:
            raise StoreUnavailableError(str(e)) from e

        totals = defaultdict(Decimal)
        for row in rows:
            totals[row["_id"].strip().lower()] += to_decimal(row["total"])
        return {name: totals[name] for name in sorted(totals)}


# ---------------- FACTORY ----------------
def open_store(url, db_name="gastos", timeout_ms=5000):
    """Build (but do not connect) the store described by a connection string."""
    if not url:
        raise ValueError("A storage connection string is required")
    if url.startswith(("mongodb://", "mongodb+srv://")):
        return MongoExpenseStore(url, db_name=db_name, timeout_ms=timeout_ms)
    if url.startswith("memory://"):
        return MemoryExpenseStore()
    if url.startswith("json://"):
        return JsonExpenseStore(url[len("json://"):])
    if url.endswith(".json"):
        return JsonExpenseStore(url)
    raise ValueError(f"Unsupported storage connection string: {url}")
