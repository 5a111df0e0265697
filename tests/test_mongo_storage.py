"""
Unit tests: MongoDB backend, backend selection and connection handling.

pymongo is replaced by mocks; these tests check the queries issued and the
translation of driver errors, not a live server.
"""
from collections import defaultdict
from unittest.mock import MagicMock, patch

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from config import Settings
from conftest import run
from database import connect_database
from schemas import InsertListing, InsertUser
from storage import (
    CROP_PRICES_LIMIT,
    MARKET_PRICES_LIMIT,
    DuplicateUsernameError,
    MemoryStorage,
    MongoStorage,
    StorageUnavailableError,
    create_storage,
)


@pytest.fixture
def collections():
    return defaultdict(MagicMock)


@pytest.fixture
def mongo(collections):
    db = MagicMock()
    db.__getitem__.side_effect = collections.__getitem__
    return MongoStorage(db)


class TestMongoStorage:

    def test_indexes_created(self, mongo, collections):
        collections["user"].create_index.assert_called_once_with("username", unique=True)
        collections["listing"].create_index.assert_called_once_with("userId")

    def test_malformed_id_is_not_found(self, mongo, collections):
        assert run(mongo.get_user("not-an-object-id")) is None
        assert run(mongo.get_crop("42")) is None
        collections["user"].find_one.assert_not_called()

    def test_get_user_stringifies_id(self, mongo, collections):
        oid = ObjectId()
        collections["user"].find_one.return_value = {"_id": oid, "username": "ram"}
        user = run(mongo.get_user(str(oid)))
        assert user == {"_id": str(oid), "username": "ram"}
        collections["user"].find_one.assert_called_once_with({"_id": oid})

    def test_get_user_by_username(self, mongo, collections):
        collections["user"].find_one.return_value = None
        assert run(mongo.get_user_by_username("ram")) is None
        collections["user"].find_one.assert_called_once_with({"username": "ram"})

    def test_create_listing(self, mongo, collections):
        oid = ObjectId()
        collections["listing"].insert_one.return_value = MagicMock(inserted_id=oid)
        listing = run(mongo.create_listing(
            InsertListing(userId="u1", quantity=10, pricePerUnit=2000, location=" Guntur ")))

        assert listing["_id"] == str(oid)
        assert listing["isActive"] is True
        assert listing["location"] == "Guntur"
        inserted = collections["listing"].insert_one.call_args[0][0]
        assert "_id" not in inserted
        assert inserted["userId"] == "u1"
        assert "createdAt" in inserted

    def test_market_prices_sorted_and_bounded(self, mongo, collections):
        cursor = collections["marketprice"].find.return_value
        cursor.sort.return_value = cursor
        cursor.limit.return_value = iter([{"_id": ObjectId(), "price": 100, "market": "Guntur Mandi"}])

        prices = run(mongo.get_market_prices())
        assert len(prices) == 1
        collections["marketprice"].find.assert_called_with({})
        cursor.sort.assert_called_with([("date", -1)])
        cursor.limit.assert_called_with(MARKET_PRICES_LIMIT)

        cursor.limit.return_value = iter([])
        run(mongo.get_market_prices_by_crop("c1"))
        collections["marketprice"].find.assert_called_with({"cropId": "c1"})
        cursor.limit.assert_called_with(CROP_PRICES_LIMIT)

    def test_active_weather_alert_query(self, mongo, collections):
        cursor = collections["weatheralert"].find.return_value
        cursor.sort.return_value = iter([])
        assert run(mongo.get_active_weather_alerts("Guntur")) == []

        query = collections["weatheralert"].find.call_args[0][0]
        assert query["location"] == "Guntur"
        assert {"validUntil": None} in query["$or"]
        bounded = [c for c in query["$or"] if c["validUntil"] is not None]
        assert "$gt" in bounded[0]["validUntil"]

    def test_update_listing(self, mongo, collections):
        oid = ObjectId()
        collections["listing"].find_one_and_update.return_value = {"_id": oid, "isActive": False}
        updated = run(mongo.update_listing(str(oid), {"isActive": False, "userId": "ignored"}))

        assert updated == {"_id": str(oid), "isActive": False}
        collections["listing"].find_one_and_update.assert_called_once_with(
            {"_id": oid}, {"$set": {"isActive": False}}, return_document=ReturnDocument.AFTER)

    def test_update_listing_missing(self, mongo, collections):
        collections["listing"].find_one_and_update.return_value = None
        assert run(mongo.update_listing(str(ObjectId()), {"isActive": False})) is None
        assert run(mongo.update_listing("bad-id", {"isActive": False})) is None

    def test_driver_errors_become_unavailable(self, mongo, collections):
        collections["crop"].find.side_effect = ServerSelectionTimeoutError("no servers")
        with pytest.raises(StorageUnavailableError):
            run(mongo.get_all_crops())

    def test_duplicate_key_becomes_duplicate_username(self, mongo, collections):
        collections["user"].insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        with pytest.raises(DuplicateUsernameError):
            run(mongo.create_user(InsertUser(username="ram", password="hash")))


class TestBackendSelection:

    def test_falls_back_to_memory(self):
        with patch("storage.connect_database", return_value=None):
            storage = create_storage(Settings())
        assert isinstance(storage, MemoryStorage)
        assert storage.persistent is False

    def test_fail_hard_when_database_required(self):
        with patch("storage.connect_database", return_value=None):
            with pytest.raises(StorageUnavailableError):
                create_storage(Settings(database_url="mongodb://db:27017", require_database=True))

    def test_uses_mongo_when_connected(self):
        with patch("storage.connect_database", return_value=MagicMock()):
            storage = create_storage(Settings(database_url="mongodb://db:27017"))
        assert isinstance(storage, MongoStorage)
        assert storage.persistent is True


class TestConnectDatabase:

    def test_no_url(self):
        assert connect_database(Settings()) is None

    def test_unreachable(self):
        with patch("database.MongoClient") as client_cls:
            client_cls.return_value.admin.command.side_effect = ServerSelectionTimeoutError("timeout")
            assert connect_database(Settings(database_url="mongodb://db:27017", db_timeout_ms=10)) is None
        client_cls.assert_called_once_with("mongodb://db:27017", serverSelectionTimeoutMS=10, tz_aware=True)
        client_cls.return_value.close.assert_called_once_with()

    def test_connected(self):
        with patch("database.MongoClient") as client_cls:
            db = connect_database(Settings(database_url="mongodb://db:27017", database_name="farm"))
        client_cls.return_value.admin.command.assert_called_once_with("ping")
        assert db is client_cls.return_value.__getitem__.return_value
        client_cls.return_value.__getitem__.assert_called_once_with("farm")
        client_cls.return_value.close.assert_not_called()
