import logging
import math
from typing import Any, Dict, List, Optional, Union

import requests
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from werkzeug.security import check_password_hash, generate_password_hash

import insights
from config import Settings
from schemas import (
    LANGUAGES,
    InsertCrop,
    InsertDiseaseDetection,
    InsertListing,
    InsertMarketPrice,
    InsertUser,
    InsertWeatherAlert,
    ListingUpdate,
)
from storage import DuplicateUsernameError, Storage, StorageUnavailableError, create_storage

logger = logging.getLogger(__name__)

BACKEND_BASE = "/api"

root_router = APIRouter()
router = APIRouter(prefix=BACKEND_BASE)

# Helpers

def oid_to_str(doc):
    if doc is None:
        return doc
    if isinstance(doc, list):
        return [oid_to_str(d) for d in doc]
    if isinstance(doc, dict):
        d = {**doc}
        if d.get("_id") is not None:
            d["_id"] = str(d["_id"])
        d.pop("password", None)
        # convert datetimes to iso
        for k, v in list(d.items()):
            if hasattr(v, "isoformat"):
                d[k] = v.isoformat()
        return d
    return doc


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    d = oid_to_str(user)
    return {
        "_id": d["_id"],
        "username": d["username"],
        "phone": d.get("phone"),
        "location": d.get("location"),
        "language": d.get("language") or "english",
        "createdAt": d.get("createdAt"),
    }


def parse_positive(value: Any) -> float:
    """Numbers or numeric strings; raises ValueError unless finite and > 0."""
    if isinstance(value, bool):
        raise ValueError("not a number")
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        raise ValueError("must be a positive number")
    return number


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# Root and health
@root_router.get("/")
def read_root():
    return {"name": "Krishi Mitra", "status": "ok"}

# ----------------------
# Crop APIs
# ----------------------
@router.get("/crops")
async def list_crops(storage: Storage = Depends(get_storage)):
    return oid_to_str(await storage.get_all_crops())

@router.get("/crops/{crop_id}")
async def get_crop(crop_id: str, storage: Storage = Depends(get_storage)):
    crop = await storage.get_crop(crop_id)
    if not crop:
        raise HTTPException(status_code=404, detail="Crop not found")
    return oid_to_str(crop)

@router.post("/crops", status_code=201)
async def create_crop(payload: InsertCrop, storage: Storage = Depends(get_storage)):
    crop = await storage.create_crop(payload)
    logger.info("Crop %s created (%s)", crop["_id"], crop["name"])
    return oid_to_str(crop)

# ----------------------
# Disease Detection APIs
# ----------------------
class DetectionPayload(BaseModel):
    userId: str = Field(..., min_length=1)
    cropId: Optional[str] = None
    imageUrl: str = Field(..., min_length=1)

@router.post("/disease-detection", status_code=201)
async def detect_disease(payload: DetectionPayload, storage: Storage = Depends(get_storage)):
    # Simulated prediction; the crop only narrows down which diseases are drawn
    crop = await storage.get_crop(payload.cropId) if payload.cropId else None
    result = insights.detect_disease(crop["name"] if crop else None)
    detection = await storage.create_disease_detection(
        InsertDiseaseDetection(**payload.model_dump(), **result)
    )
    logger.info("Disease detection %s for user %s: %s", detection["_id"], payload.userId, result["detectedDisease"])
    return oid_to_str(detection)

@router.get("/disease-detection/user/{user_id}")
async def get_user_detections(user_id: str, storage: Storage = Depends(get_storage)):
    return oid_to_str(await storage.get_user_disease_detections(user_id))

# ----------------------
# Listing (sell direct) APIs
# ----------------------
Number = Union[float, str]

class ListingPayload(BaseModel):
    userId: Optional[str] = None
    cropId: Optional[str] = None
    quantity: Optional[Number] = None
    pricePerUnit: Optional[Number] = None
    location: Optional[str] = None
    description: Optional[str] = None

@router.get("/listings")
async def list_listings(storage: Storage = Depends(get_storage)):
    return oid_to_str(await storage.get_all_listings())

@router.get("/listings/user/{user_id}")
async def get_user_listings(user_id: str, storage: Storage = Depends(get_storage)):
    return oid_to_str(await storage.get_user_listings(user_id))

@router.post("/listings", status_code=201)
async def create_listing(payload: ListingPayload, storage: Storage = Depends(get_storage)):
    if not payload.userId:
        raise HTTPException(status_code=401, detail="User ID is required")
    location = (payload.location or "").strip()
    if payload.quantity in (None, "") or payload.pricePerUnit in (None, "") or not location:
        raise HTTPException(status_code=400, detail="Quantity, price, and location are required")
    try:
        quantity = parse_positive(payload.quantity)
        price = parse_positive(payload.pricePerUnit)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Quantity and price must be positive numbers")

    listing = await storage.create_listing(InsertListing(
        userId=payload.userId,
        cropId=payload.cropId or None,
        quantity=quantity,
        pricePerUnit=price,
        location=location,
        description=payload.description or None,
    ))
    logger.info("Listing %s created for user %s", listing["_id"], listing["userId"])
    return oid_to_str(listing)

@router.patch("/listings/{listing_id}")
async def update_listing(listing_id: str, payload: ListingUpdate, storage: Storage = Depends(get_storage)):
    changes = payload.changes()
    for field in ("quantity", "pricePerUnit"):
        if changes.get(field) is not None and changes[field] <= 0:
            raise HTTPException(status_code=400, detail=f"{field} must be a positive number")
    if "location" in changes:
        if not (changes["location"] or "").strip():
            raise HTTPException(status_code=400, detail="location must not be empty")
        changes["location"] = changes["location"].strip()

    updated = await storage.update_listing(listing_id, changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Listing not found")
    return oid_to_str(updated)

# ----------------------
# Market Price APIs
# ----------------------
@router.get("/market-prices")
async def list_market_prices(storage: Storage = Depends(get_storage)):
    return oid_to_str(await storage.get_market_prices())

@router.get("/market-prices/crop/{crop_id}")
async def get_crop_prices(crop_id: str, storage: Storage = Depends(get_storage)):
    return oid_to_str(await storage.get_market_prices_by_crop(crop_id))

@router.get("/market-prices/prediction/{crop_id}")
async def predict_crop_prices(crop_id: str, storage: Storage = Depends(get_storage)):
    prices = await storage.get_market_prices_by_crop(crop_id)
    if prices:
        base = prices[0]["price"]
    else:
        crop = await storage.get_crop(crop_id)
        base = crop.get("currentPrice") if crop else None
    if base is None:
        raise HTTPException(status_code=404, detail="No price data for crop")
    return insights.predict_prices(crop_id, float(base))

@router.post("/market-prices", status_code=201)
async def create_market_price(payload: InsertMarketPrice, storage: Storage = Depends(get_storage)):
    price = await storage.create_market_price(payload)
    logger.info("Market price %s recorded at %s", price["_id"], price["market"])
    return oid_to_str(price)

# ----------------------
# Weather APIs
# ----------------------
@router.get("/weather-alerts/{location}")
async def get_weather_alerts(location: str, storage: Storage = Depends(get_storage)):
    alerts = await storage.get_active_weather_alerts(location)
    if not alerts:
        return [oid_to_str(insights.sample_weather_alert(location))]
    return oid_to_str(alerts)

@router.post("/weather-alerts", status_code=201)
async def create_weather_alert(payload: InsertWeatherAlert, storage: Storage = Depends(get_storage)):
    alert = await storage.create_weather_alert(payload)
    logger.info("Weather alert %s (%s/%s) for %s", alert["_id"], alert["alertType"], alert["severity"], alert["location"])
    return oid_to_str(alert)

@router.get("/weather/forecast/{location}")
def get_forecast(location: str, settings: Settings = Depends(get_settings)):
    if not settings.openweather_api_key:
        # Return mock if key not set
        return insights.synthetic_forecast(location)
    try:
        return insights.openweather_forecast(location, settings.openweather_api_key)
    except (requests.RequestException, KeyError, IndexError, ValueError) as e:
        raise HTTPException(status_code=502, detail=f"Weather API error: {str(e)[:120]}")

# ----------------------
# User / Auth APIs
# ----------------------
class RegisterPayload(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    language: Optional[str] = None

class LoginPayload(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None

@router.post("/auth/register", status_code=201)
async def register_user(payload: RegisterPayload, storage: Storage = Depends(get_storage)):
    username = (payload.username or "").strip()
    if not username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    language = payload.language or "english"
    if language not in LANGUAGES:
        raise HTTPException(status_code=400, detail=f"Language must be one of: {', '.join(LANGUAGES)}")

    if await storage.get_user_by_username(username):
        raise HTTPException(status_code=400, detail="Username already exists")
    try:
        user = await storage.create_user(InsertUser(
            username=username,
            password=generate_password_hash(payload.password),
            phone=payload.phone or None,
            location=payload.location or None,
            language=language,
        ))
    except DuplicateUsernameError:
        raise HTTPException(status_code=400, detail="Username already exists")
    logger.info("User %s registered (%s)", user["_id"], user["username"])
    return public_user(user)

@router.post("/auth/login")
async def login(payload: LoginPayload, storage: Storage = Depends(get_storage)):
    username = (payload.username or "").strip()
    user = await storage.get_user_by_username(username) if username else None
    if not user or not payload.password or not check_password_hash(user["password"], payload.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return public_user(user)

@router.get("/users/{user_id}")
async def get_user(user_id: str, storage: Storage = Depends(get_storage)):
    user = await storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)

# ----------------------
# Status, analytics and directory APIs
# ----------------------
@router.get("/database/status")
async def database_status(storage: Storage = Depends(get_storage)):
    try:
        counts = await storage.collection_counts()
    except StorageUnavailableError as e:
        logger.error("Database status check failed: %s", e)
        return JSONResponse(status_code=500, content={
            "connected": False,
            "backend": storage.name,
            "message": "Database unavailable",
            "error": str(e)[:200],
        })
    return {
        "connected": storage.persistent,
        "backend": storage.name,
        "collections": counts,
        "message": "MongoDB is connected and operational" if storage.persistent else "Using in-memory storage",
    }

@router.get("/analytics/{user_id}")
async def get_analytics(user_id: str, storage: Storage = Depends(get_storage)):
    listings = await storage.get_user_listings(user_id)
    return insights.farm_analytics(user_id, listings)

@router.get("/experts")
def list_experts(category: Optional[str] = None) -> List[Dict[str, Any]]:
    if category:
        return [e for e in insights.EXPERTS if e["category"] == category]
    return insights.EXPERTS

# ----------------------
# Error handlers
# ----------------------
def register_error_handlers(app: FastAPI, settings: Settings):

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail},
                            headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={
            "message": "Invalid request body",
            "errors": jsonable_encoder(exc.errors()),
        })

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable(request: Request, exc: StorageUnavailableError):
        logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
        content = {"message": "Storage backend unavailable"}
        if settings.is_development:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"message": "Internal server error"}
        if settings.is_development:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)


def create_app(storage: Optional[Storage] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the app. The storage backend is resolved here, once."""
    settings = settings or Settings()
    app = FastAPI(title="Krishi Mitra API", version="0.1.0")
    app.state.settings = settings
    app.state.storage = storage if storage is not None else create_storage(settings)
    logger.info("Storage backend: %s", app.state.storage.name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app, settings)
    app.include_router(root_router)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings=settings), host="0.0.0.0", port=settings.port)
