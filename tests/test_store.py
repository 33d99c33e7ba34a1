import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from bson.decimal128 import Decimal128
from pymongo.errors import AutoReconnect

from store import (
    ConnectionState,
    ExpenseRecord,
    HeartbeatStateListener,
    JsonExpenseStore,
    MemoryExpenseStore,
    MongoExpenseStore,
    StoreUnavailableError,
    open_store,
)

JAN_1 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------- RECORD ----------------
def test_record_quantizes_and_trims():
    record = ExpenseRecord(amount=Decimal("20.5"), category="  Transporte ")
    assert record.amount == Decimal("20.50")
    assert str(record.amount) == "20.50"
    assert record.category == "Transporte"
    assert record.category_key == "transporte"
    assert record.date.tzinfo is not None


@pytest.mark.parametrize("amount", ["-1", "NaN", "Infinity", "abc", "1000000000000", "1e30"])
def test_record_rejects_bad_amounts(amount):
    with pytest.raises(ValueError):
        ExpenseRecord(amount=amount, category="comida")


def test_record_rejects_blank_category():
    with pytest.raises(ValueError):
        ExpenseRecord(amount=Decimal("1"), category="   ")


def test_naive_dates_are_treated_as_utc():
    record = ExpenseRecord(amount=Decimal("1"), category="pan", date=datetime(2024, 1, 1))
    assert record.date == datetime(2024, 1, 1, tzinfo=timezone.utc)


# ---------------- STATE ----------------
def test_state_listeners_see_transitions():
    store = MemoryExpenseStore()
    seen = []
    store.on_state_change(lambda old, new: seen.append((old, new)))

    assert store.state is ConnectionState.DISCONNECTED
    store.connect()
    store.connect()
    store.close()

    assert seen == [
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTED),
        (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
    ]


def test_failing_listener_does_not_block_state_change():
    store = MemoryExpenseStore()

    def broken(old, new):
        raise RuntimeError("boom")

    store.on_state_change(broken)
    store.connect()
    assert store.is_connected


# ---------------- MEMORY ----------------
def test_memory_filters_by_sender_and_date(store):
    store.add_expense(ExpenseRecord(Decimal("1"), "pan", JAN_1, "a"))
    store.add_expense(ExpenseRecord(Decimal("2"), "Pan", JAN_1 + timedelta(days=2), "a"))
    store.add_expense(ExpenseRecord(Decimal("4"), "luz", JAN_1, "b"))

    assert len(store.find_expenses()) == 3
    assert [r.amount for r in store.find_expenses(sender_id="a")] == [Decimal("1.00"), Decimal("2.00")]
    since = JAN_1 + timedelta(days=1)
    assert [r.amount for r in store.find_expenses(since=since)] == [Decimal("2.00")]
    assert [r.amount for r in store.find_expenses(until=since)] == [Decimal("1.00"), Decimal("4.00")]
    assert store.totals_by_category(sender_id="a") == {"pan": Decimal("3.00")}


# ---------------- JSON FILE ----------------
def test_json_store_persists_records(tmp_path):
    path = tmp_path / "data" / "expenses.json"
    store = JsonExpenseStore(str(path)).connect()
    assert store.is_connected
    assert json.loads(path.read_text()) == {"transactions": []}

    store.add_expense(ExpenseRecord(Decimal("150"), "comida", JAN_1, "42"))
    store.add_expense(ExpenseRecord(Decimal("9.5"), "Transporte", JAN_1, "42"))

    saved = json.loads(path.read_text())["transactions"]
    assert saved[0]["amount"] == "150.00"
    assert saved[0]["type"] == "expense"
    assert saved[0]["user_id"] == "42"
    assert saved[0]["id"].startswith("exp42")

    reopened = JsonExpenseStore(str(path)).connect()
    records = reopened.find_expenses(sender_id="42")
    assert [r.category for r in records] == ["comida", "Transporte"]
    assert records[0].date == JAN_1
    assert reopened.totals_by_category() == {"comida": Decimal("150.00"), "transporte": Decimal("9.50")}


def test_json_store_unreadable_file_stays_disconnected(tmp_path):
    path = tmp_path / "expenses.json"
    path.write_text("{not json")
    store = JsonExpenseStore(str(path)).connect()
    assert store.state is ConnectionState.DISCONNECTED


def test_json_store_write_failure_is_store_unavailable(tmp_path, monkeypatch):
    store = JsonExpenseStore(str(tmp_path / "expenses.json")).connect()

    def fail(data):
        raise OSError("disk full")

    monkeypatch.setattr(store, "save_json", fail)
    with pytest.raises(StoreUnavailableError):
        store.add_expense(ExpenseRecord(Decimal("1"), "pan"))


# ---------------- MONGODB ----------------
class FakeCursor(list):
    def sort(self, key, direction):
        return FakeCursor(sorted(self, key=lambda d: d[key]))


class FakeCollection:
    def __init__(self, rows=None, error=None):
        self.docs = []
        self.rows = rows or []
        self.error = error
        self.pipelines = []

    def insert_one(self, doc):
        if self.error:
            raise self.error
        self.docs.append(doc)

    def find(self, query):
        if self.error:
            raise self.error
        found = FakeCursor()
        for doc in self.docs:
            if "sender_id" in query and doc["sender_id"] != query["sender_id"]:
                continue
            dates = query.get("date", {})
            if "$gte" in dates and doc["date"] < dates["$gte"]:
                continue
            if "$lt" in dates and doc["date"] >= dates["$lt"]:
                continue
            found.append(doc)
        return found

    def aggregate(self, pipeline):
        if self.error:
            raise self.error
        self.pipelines.append(pipeline)
        return iter(self.rows)


def test_mongo_documents_round_trip():
    collection = FakeCollection()
    store = MongoExpenseStore(collection=collection).connect()
    assert store.is_connected

    store.add_expense(ExpenseRecord(Decimal("20.5"), "Transporte", JAN_1, 7))
    doc = collection.docs[0]
    assert doc["amount"] == Decimal128("20.50")
    assert doc["sender_id"] == "7"

    records = store.find_expenses(sender_id=7, since=JAN_1 - timedelta(hours=1))
    assert records == [ExpenseRecord(Decimal("20.50"), "Transporte", JAN_1, "7")]
    assert store.find_expenses(sender_id="8") == []


def test_mongo_totals_use_group_pipeline():
    collection = FakeCollection(rows=[
        {"_id": "comida", "total": Decimal128("150.00")},
        {"_id": "transporte", "total": Decimal128("30.00")},
    ])
    store = MongoExpenseStore(collection=collection).connect()

    totals = store.totals_by_category(sender_id="7")
    assert totals == {"comida": Decimal("150.00"), "transporte": Decimal("30.00")}
    match, group = collection.pipelines[0]
    assert match == {"$match": {"sender_id": "7"}}
    assert group["$group"]["_id"] == "$category"


def test_mongo_totals_fold_non_ascii_case_like_other_stores():
    collection = FakeCollection(rows=[
        {"_id": "CAFÉ", "total": Decimal128("2.50")},
        {"_id": "café", "total": Decimal128("1.25")},
        {"_id": "Ñandú", "total": Decimal128("4.00")},
    ])
    store = MongoExpenseStore(collection=collection).connect()

    assert store.totals_by_category() == {"café": Decimal("3.75"), "ñandú": Decimal("4.00")}

    memory = MemoryExpenseStore([
        ExpenseRecord(Decimal("2.50"), "CAFÉ"),
        ExpenseRecord(Decimal("1.25"), "café"),
        ExpenseRecord(Decimal("4"), "Ñandú"),
    ])
    assert memory.totals_by_category() == store.totals_by_category()


def test_mongo_connection_failure_is_store_unavailable():
    store = MongoExpenseStore(collection=FakeCollection(error=AutoReconnect("gone"))).connect()
    with pytest.raises(StoreUnavailableError):
        store.add_expense(ExpenseRecord(Decimal("1"), "pan"))
    with pytest.raises(StoreUnavailableError):
        store.find_expenses()


def test_mongo_requires_connect():
    with pytest.raises(StoreUnavailableError):
        MongoExpenseStore("mongodb://localhost").find_expenses()


def test_heartbeats_drive_connection_state():
    store = MongoExpenseStore("mongodb://localhost")
    listener = HeartbeatStateListener(store)
    event = SimpleNamespace(connection_id=("localhost", 27017), reply=AutoReconnect("down"))

    listener.succeeded(event)
    assert store.state is ConnectionState.CONNECTED
    listener.failed(event)
    assert store.state is ConnectionState.DISCONNECTED


# ---------------- FACTORY ----------------
@pytest.mark.parametrize("url, kind", [
    ("mongodb://localhost:27017/gastos", MongoExpenseStore),
    ("mongodb+srv://user:pw@cluster.example/gastos", MongoExpenseStore),
    ("memory://", MemoryExpenseStore),
    ("json:///tmp/gastos.json", JsonExpenseStore),
    ("data/gastos.json", JsonExpenseStore),
])
def test_open_store(url, kind):
    assert isinstance(open_store(url), kind)


def test_open_store_json_path():
    assert open_store("json:///tmp/gastos.json").path == "/tmp/gastos.json"


@pytest.mark.parametrize("url", ["", "postgres://db", None])
def test_open_store_rejects_unknown(url):
    with pytest.raises(ValueError):
        open_store(url)
