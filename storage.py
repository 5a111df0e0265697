"""
Storage layer for Krishi Mitra

`Storage` is the contract every backend satisfies. Two backends exist:

- MemoryStorage: process-local dicts, seeded with sample crops and mandi prices
- MongoStorage: one MongoDB collection per entity

create_storage() picks one of them, once, at startup. Records come back as
plain dicts keyed by wire field names, with `_id` as a string. Lookups that
find nothing return None or [], they never raise.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi.concurrency import run_in_threadpool
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from database import collection_name, connect_database, create_document, get_documents
from schemas import (
    Crop,
    DiseaseDetection,
    InsertCrop,
    InsertDiseaseDetection,
    InsertListing,
    InsertMarketPrice,
    InsertUser,
    InsertWeatherAlert,
    Listing,
    ListingUpdate,
    MarketPrice,
    User,
    WeatherAlert,
    utcnow,
)

logger = logging.getLogger(__name__)

MARKET_PRICES_LIMIT = 50
CROP_PRICES_LIMIT = 30

# fields a listing update may touch
LISTING_MUTABLE_FIELDS = frozenset(ListingUpdate.model_fields)

Record = Dict[str, Any]


class StorageError(Exception):
    pass


class StorageUnavailableError(StorageError):
    """The persistent backend cannot be reached."""


class DuplicateUsernameError(StorageError):
    pass


class Storage(ABC):
    name = "abstract"
    persistent = False

    # Users
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[Record]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[Record]: ...

    @abstractmethod
    async def create_user(self, user: InsertUser) -> Record: ...

    # Crops
    @abstractmethod
    async def get_all_crops(self) -> List[Record]: ...

    @abstractmethod
    async def get_crop(self, crop_id: str) -> Optional[Record]: ...

    @abstractmethod
    async def create_crop(self, crop: InsertCrop) -> Record: ...

    # Disease detections
    @abstractmethod
    async def create_disease_detection(self, detection: InsertDiseaseDetection) -> Record: ...

    @abstractmethod
    async def get_user_disease_detections(self, user_id: str) -> List[Record]: ...

    # Listings
    @abstractmethod
    async def get_all_listings(self) -> List[Record]: ...

    @abstractmethod
    async def get_user_listings(self, user_id: str) -> List[Record]: ...

    @abstractmethod
    async def create_listing(self, listing: InsertListing) -> Record: ...

    @abstractmethod
    async def update_listing(self, listing_id: str, fields: Dict[str, Any]) -> Optional[Record]: ...

    # Market prices
    @abstractmethod
    async def get_market_prices(self) -> List[Record]: ...

    @abstractmethod
    async def get_market_prices_by_crop(self, crop_id: str) -> List[Record]: ...

    @abstractmethod
    async def create_market_price(self, price: InsertMarketPrice) -> Record: ...

    # Weather alerts
    @abstractmethod
    async def get_active_weather_alerts(self, location: str) -> List[Record]: ...

    @abstractmethod
    async def create_weather_alert(self, alert: InsertWeatherAlert) -> Record: ...

    async def collection_counts(self) -> Dict[str, int]:
        crops = await self.get_all_crops()
        listings = await self.get_all_listings()
        prices = await self.get_market_prices()
        return {"crops": len(crops), "listings": len(listings), "marketPrices": len(prices)}


def _listing_changes(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if k in LISTING_MUTABLE_FIELDS}


# ----------------------
# In-memory backend
# ----------------------
SEED_CROPS = [
    {"name": "Rice", "nameHindi": "चावल", "nameTelugu": "బియ్యం", "category": "Grain", "currentPrice": 2400},
    {"name": "Wheat", "nameHindi": "गेहूं", "nameTelugu": "గోధుమలు", "category": "Grain", "currentPrice": 2100},
    {"name": "Cotton", "nameHindi": "कपास", "nameTelugu": "పత్తి", "category": "Cash Crop", "currentPrice": 5800},
    {"name": "Tomato", "nameHindi": "टमाटर", "nameTelugu": "టమాటా", "category": "Vegetable", "currentPrice": 1200},
]

SEED_MARKET_PRICES = [
    {"cropId": "1", "price": 2400, "priceChange": 12, "market": "Guntur Mandi"},
    {"cropId": "2", "price": 2100, "priceChange": 5, "market": "Delhi Mandi"},
    {"cropId": "3", "price": 5800, "priceChange": -3, "market": "Ahmedabad Mandi"},
    {"cropId": "4", "price": 1200, "priceChange": 8, "market": "Pune Mandi"},
]

# ids below this are reserved for seed records
FIRST_GENERATED_ID = 10


def _newest_first(records: Iterable[Record], key: str) -> List[Record]:
    # reversed() first so that equal timestamps keep the later insert ahead
    ordered = sorted(reversed(list(records)), key=lambda r: r[key], reverse=True)
    return [dict(r) for r in ordered]


class MemoryStorage(Storage):
    """Dict-per-collection storage. Nothing survives a restart."""
    name = "memory"
    persistent = False

    def __init__(self, seed: bool = True):
        self._users: Dict[str, Record] = {}
        self._crops: Dict[str, Record] = {}
        self._detections: Dict[str, Record] = {}
        self._listings: Dict[str, Record] = {}
        self._market_prices: Dict[str, Record] = {}
        self._weather_alerts: Dict[str, Record] = {}
        self._next_id = 1
        if seed:
            self._seed()

    def _seed(self):
        for i, crop in enumerate(SEED_CROPS, start=1):
            self._crops[str(i)] = Crop(id=str(i), **crop).to_document()
        for i, price in enumerate(SEED_MARKET_PRICES, start=1):
            self._market_prices[str(i)] = MarketPrice(id=str(i), **price).to_document()
        self._next_id = FIRST_GENERATED_ID

    def _new_id(self) -> str:
        new_id = str(self._next_id)
        self._next_id += 1
        return new_id

    @staticmethod
    def _copy(record: Optional[Record]) -> Optional[Record]:
        return dict(record) if record is not None else None

    async def get_user(self, user_id: str) -> Optional[Record]:
        return self._copy(self._users.get(user_id))

    async def get_user_by_username(self, username: str) -> Optional[Record]:
        for user in self._users.values():
            if user["username"] == username:
                return dict(user)
        return None

    async def create_user(self, user: InsertUser) -> Record:
        if any(u["username"] == user.username for u in self._users.values()):
            raise DuplicateUsernameError(user.username)
        record = User(id=self._new_id(), **user.model_dump()).to_document()
        self._users[record["_id"]] = record
        return dict(record)

    async def get_all_crops(self) -> List[Record]:
        return [dict(c) for c in self._crops.values()]

    async def get_crop(self, crop_id: str) -> Optional[Record]:
        return self._copy(self._crops.get(crop_id))

    async def create_crop(self, crop: InsertCrop) -> Record:
        record = Crop(id=self._new_id(), **crop.model_dump()).to_document()
        self._crops[record["_id"]] = record
        return dict(record)

    async def create_disease_detection(self, detection: InsertDiseaseDetection) -> Record:
        record = DiseaseDetection(id=self._new_id(), **detection.model_dump()).to_document()
        self._detections[record["_id"]] = record
        return dict(record)

    async def get_user_disease_detections(self, user_id: str) -> List[Record]:
        found = (d for d in self._detections.values() if d["userId"] == user_id)
        return _newest_first(found, "detectedAt")

    async def get_all_listings(self) -> List[Record]:
        return _newest_first((l for l in self._listings.values() if l["isActive"]), "createdAt")

    async def get_user_listings(self, user_id: str) -> List[Record]:
        return _newest_first((l for l in self._listings.values() if l["userId"] == user_id), "createdAt")

    async def create_listing(self, listing: InsertListing) -> Record:
        record = Listing(id=self._new_id(), **listing.model_dump()).to_document()
        self._listings[record["_id"]] = record
        return dict(record)

    async def update_listing(self, listing_id: str, fields: Dict[str, Any]) -> Optional[Record]:
        current = self._listings.get(listing_id)
        if current is None:
            return None
        merged = {**current, **_listing_changes(fields)}
        record = Listing(**merged).to_document()
        self._listings[listing_id] = record
        return dict(record)

    async def get_market_prices(self) -> List[Record]:
        return _newest_first(self._market_prices.values(), "date")[:MARKET_PRICES_LIMIT]

    async def get_market_prices_by_crop(self, crop_id: str) -> List[Record]:
        found = (p for p in self._market_prices.values() if p.get("cropId") == crop_id)
        return _newest_first(found, "date")[:CROP_PRICES_LIMIT]

    async def create_market_price(self, price: InsertMarketPrice) -> Record:
        record = MarketPrice(id=self._new_id(), **price.model_dump()).to_document()
        self._market_prices[record["_id"]] = record
        return dict(record)

    async def get_active_weather_alerts(self, location: str) -> List[Record]:
        now = utcnow()
        found = (
            a for a in self._weather_alerts.values()
            if a["location"] == location and (a.get("validUntil") is None or a["validUntil"] > now)
        )
        return _newest_first(found, "createdAt")

    async def create_weather_alert(self, alert: InsertWeatherAlert) -> Record:
        record = WeatherAlert(id=self._new_id(), **alert.model_dump()).to_document()
        self._weather_alerts[record["_id"]] = record
        return dict(record)


# ----------------------
# MongoDB backend
# ----------------------
USERS = collection_name(User)
CROPS = collection_name(Crop)
DETECTIONS = collection_name(DiseaseDetection)
LISTINGS = collection_name(Listing)
MARKET_PRICES = collection_name(MarketPrice)
WEATHER_ALERTS = collection_name(WeatherAlert)

NEWEST = -1


def _out(doc: Optional[Record]) -> Optional[Record]:
    if doc is None:
        return None
    d = dict(doc)
    d["_id"] = str(d["_id"])
    return d


class MongoStorage(Storage):
    name = "mongodb"
    persistent = True

    def __init__(self, db: Database):
        self.db = db
        self._ensure_indexes()

    def _ensure_indexes(self):
        try:
            self.db[USERS].create_index("username", unique=True)
            self.db[LISTINGS].create_index("userId")
        except PyMongoError as e:
            logger.warning("Could not create indexes: %s", str(e)[:200])

    async def _run(self, fn: Callable, *args, **kwargs):
        try:
            return await run_in_threadpool(fn, *args, **kwargs)
        except DuplicateKeyError as e:
            # username is the only unique index
            raise DuplicateUsernameError(str(e)) from e
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e

    async def _find_by_id(self, collection: str, doc_id: str) -> Optional[Record]:
        if not ObjectId.is_valid(doc_id):
            return None
        doc = await self._run(self.db[collection].find_one, {"_id": ObjectId(doc_id)})
        return _out(doc)

    async def _insert(self, collection: str, record: Record) -> Record:
        inserted_id = await self._run(create_document, self.db, collection, record)
        return {**record, "_id": inserted_id}

    async def _find(self, collection: str, filter_dict: Record, sort_key: Optional[str] = None,
                    limit: int = 0) -> List[Record]:
        sort = [(sort_key, NEWEST)] if sort_key else None
        docs = await self._run(get_documents, self.db, collection, filter_dict, sort, limit)
        return [_out(d) for d in docs]

    async def get_user(self, user_id: str) -> Optional[Record]:
        return await self._find_by_id(USERS, user_id)

    async def get_user_by_username(self, username: str) -> Optional[Record]:
        doc = await self._run(self.db[USERS].find_one, {"username": username})
        return _out(doc)

    async def create_user(self, user: InsertUser) -> Record:
        return await self._insert(USERS, User(**user.model_dump()).to_document())

    async def get_all_crops(self) -> List[Record]:
        return await self._find(CROPS, {})

    async def get_crop(self, crop_id: str) -> Optional[Record]:
        return await self._find_by_id(CROPS, crop_id)

    async def create_crop(self, crop: InsertCrop) -> Record:
        return await self._insert(CROPS, Crop(**crop.model_dump()).to_document())

    async def create_disease_detection(self, detection: InsertDiseaseDetection) -> Record:
        return await self._insert(DETECTIONS, DiseaseDetection(**detection.model_dump()).to_document())

    async def get_user_disease_detections(self, user_id: str) -> List[Record]:
        return await self._find(DETECTIONS, {"userId": user_id}, "detectedAt")

    async def get_all_listings(self) -> List[Record]:
        return await self._find(LISTINGS, {"isActive": True}, "createdAt")

    async def get_user_listings(self, user_id: str) -> List[Record]:
        return await self._find(LISTINGS, {"userId": user_id}, "createdAt")

    async def create_listing(self, listing: InsertListing) -> Record:
        return await self._insert(LISTINGS, Listing(**listing.model_dump()).to_document())

    async def update_listing(self, listing_id: str, fields: Dict[str, Any]) -> Optional[Record]:
        if not ObjectId.is_valid(listing_id):
            return None
        changes = _listing_changes(fields)
        if not changes:
            return await self._find_by_id(LISTINGS, listing_id)
        doc = await self._run(
            self.db[LISTINGS].find_one_and_update,
            {"_id": ObjectId(listing_id)},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return _out(doc)

    async def get_market_prices(self) -> List[Record]:
        return await self._find(MARKET_PRICES, {}, "date", MARKET_PRICES_LIMIT)

    async def get_market_prices_by_crop(self, crop_id: str) -> List[Record]:
        return await self._find(MARKET_PRICES, {"cropId": crop_id}, "date", CROP_PRICES_LIMIT)

    async def create_market_price(self, price: InsertMarketPrice) -> Record:
        return await self._insert(MARKET_PRICES, MarketPrice(**price.model_dump()).to_document())

    async def get_active_weather_alerts(self, location: str) -> List[Record]:
        query = {
            "location": location,
            "$or": [{"validUntil": {"$gt": utcnow()}}, {"validUntil": None}],
        }
        return await self._find(WEATHER_ALERTS, query, "createdAt")

    async def create_weather_alert(self, alert: InsertWeatherAlert) -> Record:
        return await self._insert(WEATHER_ALERTS, WeatherAlert(**alert.model_dump()).to_document())


def create_storage(settings: Settings) -> Storage:
    """
    Resolve the backend for the lifetime of the process.

    Falls back to MemoryStorage when no database is configured or reachable,
    unless settings.require_database is set, in which case it raises.
    """
    db = connect_database(settings)
    if db is not None:
        logger.info("Using MongoDB storage")
        return MongoStorage(db)
    if settings.require_database:
        raise StorageUnavailableError("Database connection required but not available")
    logger.warning("Using in-memory storage; data will not persist across restarts")
    return MemoryStorage()
