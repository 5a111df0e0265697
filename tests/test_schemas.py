"""
Unit tests: entity schemas and insert shapes.
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from database import collection_name
from schemas import (
    Crop,
    DiseaseDetection,
    InsertListing,
    InsertUser,
    InsertWeatherAlert,
    Listing,
    ListingUpdate,
    MarketPrice,
    User,
    WeatherAlert,
)


class TestInsertShapes:

    def test_user_defaults(self):
        user = InsertUser(username="  ram ", password="h")
        assert user.username == "ram"
        assert user.language == "english"
        assert user.phone is None

    def test_user_language_enum(self):
        with pytest.raises(ValidationError):
            InsertUser(username="ram", password="h", language="french")

    def test_insert_shapes_exclude_server_fields(self):
        assert "_id" not in InsertUser.model_fields
        assert "createdAt" not in InsertUser.model_fields
        assert "isActive" not in InsertListing.model_fields

    def test_listing_non_negative(self):
        with pytest.raises(ValidationError):
            InsertListing(userId="u1", quantity=-1, pricePerUnit=10, location="Guntur")

    def test_weather_severity(self):
        for level in ("low", "medium", "high", "critical"):
            InsertWeatherAlert(location="x", alertType="rain", severity=level, message="m")
        with pytest.raises(ValidationError):
            InsertWeatherAlert(location="x", alertType="rain", severity="severe", message="m")

    def test_confidence_is_percentage(self):
        with pytest.raises(ValidationError):
            DiseaseDetection(userId="u1", imageUrl="a.jpg", confidence=120)


class TestDocuments:

    def test_listing_defaults(self):
        doc = Listing(userId="u1", quantity=1, pricePerUnit=1, location="Guntur").to_document()
        assert doc["isActive"] is True
        assert doc["createdAt"].tzinfo is not None
        assert "_id" not in doc

    def test_id_alias(self):
        doc = Crop(id="7", name="Rice", category="Grain").to_document()
        assert doc["_id"] == "7"
        assert doc["unit"] == "quintal"
        assert Crop(**doc).id == "7"

    def test_naive_datetimes_become_utc(self):
        alert = WeatherAlert(location="x", alertType="rain", severity="low", message="m",
                             validUntil=datetime(2030, 1, 1, 12, 0))
        assert alert.validUntil == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_listing_update_changes_only_set_fields(self):
        assert ListingUpdate(isActive=False).changes() == {"isActive": False}
        assert ListingUpdate(description=None).changes() == {"description": None}
        assert ListingUpdate().changes() == {}

    def test_collection_names(self):
        assert collection_name(User) == "user"
        assert collection_name(MarketPrice) == "marketprice"
        assert collection_name(DiseaseDetection) == "diseasedetection"
