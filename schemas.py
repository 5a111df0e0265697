"""
Database Schemas for Krishi Mitra

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name:
- User -> "user"
- DiseaseDetection -> "diseasedetection"
- MarketPrice -> "marketprice"

The Insert* models are the fields a client may supply at creation time;
ids, timestamps and isActive are assigned by the storage backend.
"""
from datetime import datetime, timezone
from typing import Annotated, Optional, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

Language = Literal["english", "hindi", "telugu"]
Severity = Literal["low", "medium", "high", "critical"]

LANGUAGES = ("english", "hindi", "telugu")
SEVERITIES = ("low", "medium", "high", "critical")


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class Document(BaseModel):
    """Base for stored records; `_id` is always a string on the way out."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")

    def to_document(self) -> dict:
        data = self.model_dump(by_alias=True)
        if data.get("_id") is None:
            data.pop("_id", None)
        return data


# ----------------------
# Users
# ----------------------
class InsertUser(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, description="Salted hash once stored")
    phone: Optional[str] = None
    location: Optional[str] = None
    language: Language = "english"

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username must not be blank")
        return v


class User(Document, InsertUser):
    createdAt: UTCDateTime = Field(default_factory=utcnow)


# ----------------------
# Crops
# ----------------------
class InsertCrop(BaseModel):
    name: str = Field(..., min_length=1)
    nameHindi: Optional[str] = None
    nameTelugu: Optional[str] = None
    category: str = Field(..., min_length=1)
    currentPrice: Optional[float] = Field(None, ge=0)
    unit: str = "quintal"


class Crop(Document, InsertCrop):
    pass


# ----------------------
# Disease detections
# ----------------------
class InsertDiseaseDetection(BaseModel):
    userId: str = Field(..., min_length=1)
    cropId: Optional[str] = None
    imageUrl: str = Field(..., min_length=1)
    detectedDisease: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=100, description="Percentage")
    treatment: Optional[str] = None


class DiseaseDetection(Document, InsertDiseaseDetection):
    detectedAt: UTCDateTime = Field(default_factory=utcnow)


# ----------------------
# Listings
# ----------------------
class InsertListing(BaseModel):
    userId: str = Field(..., min_length=1)
    cropId: Optional[str] = None
    quantity: float = Field(..., ge=0)
    pricePerUnit: float = Field(..., ge=0)
    location: str = Field(..., min_length=1)
    description: Optional[str] = None

    @field_validator("location", mode="before")
    @classmethod
    def strip_location(cls, v):
        return v.strip() if isinstance(v, str) else v


class Listing(Document, InsertListing):
    isActive: bool = True
    createdAt: UTCDateTime = Field(default_factory=utcnow)


class ListingUpdate(BaseModel):
    """Partial listing fields; only the ones explicitly set are applied."""
    cropId: Optional[str] = None
    quantity: Optional[float] = Field(None, ge=0)
    pricePerUnit: Optional[float] = Field(None, ge=0)
    location: Optional[str] = None
    description: Optional[str] = None
    isActive: Optional[bool] = None

    # may be omitted, but not set to null
    @field_validator("quantity", "pricePerUnit", "location", "isActive")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# ----------------------
# Market prices
# ----------------------
class InsertMarketPrice(BaseModel):
    cropId: Optional[str] = None
    price: float = Field(..., ge=0)
    priceChange: Optional[float] = Field(None, description="Signed percent change")
    market: str = Field(..., min_length=1, description="Mandi name, e.g. Guntur Mandi")


class MarketPrice(Document, InsertMarketPrice):
    date: UTCDateTime = Field(default_factory=utcnow)


# ----------------------
# Weather alerts
# ----------------------
class InsertWeatherAlert(BaseModel):
    location: str = Field(..., min_length=1)
    alertType: str = Field(..., min_length=1)
    severity: Severity
    message: str = Field(..., min_length=1)
    messageHindi: Optional[str] = None
    messageTelugu: Optional[str] = None
    validUntil: Optional[UTCDateTime] = None


class WeatherAlert(Document, InsertWeatherAlert):
    createdAt: UTCDateTime = Field(default_factory=utcnow)
