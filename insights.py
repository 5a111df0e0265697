"""
Synthesized "AI" results

None of this is real inference. Disease labels, forecasts and price
predictions are drawn at random within plausible ranges so the app has
something to show until real models are wired in.
"""
import logging
import random
from datetime import timedelta
from typing import Any, Dict, List, Optional

import requests

from schemas import utcnow

logger = logging.getLogger(__name__)

_random = random.Random()

DISEASES = {
    "tomato": ["Early Blight", "Late Blight", "Leaf Mold", "Septoria Leaf Spot"],
    "rice": ["Blast", "Brown Spot", "Bacterial Blight", "Sheath Blight"],
    "wheat": ["Rust", "Powdery Mildew", "Leaf Blight", "Smut"],
    "cotton": ["Leaf Curl", "Wilt", "Boll Rot", "Root Rot"],
}
DEFAULT_DISEASE_CROP = "tomato"

TREATMENTS = {
    "Early Blight": "Apply copper-based fungicide every 7-10 days. Remove infected leaves.",
    "Late Blight": "Spray Mancozeb or Metalaxyl. Destroy infected plants and avoid overhead irrigation.",
    "Blast": "Use Tricyclazole fungicide. Maintain proper water management.",
    "Rust": "Apply Propiconazole. Ensure good air circulation.",
    "Leaf Curl": "Use Imidacloprid. Control whitefly population.",
}
DEFAULT_TREATMENT = "Consult agricultural expert for treatment plan."

CONDITIONS = [("Sunny", "☀️"), ("Cloudy", "☁️"), ("Rainy", "🌧️"), ("Partly Cloudy", "⛅")]

EXPERTS = [
    {
        "id": 1,
        "name": "Dr. Ravi Kumar",
        "category": "agronomist",
        "specialty": "Crop Disease Specialist",
        "experience": "15+ years",
        "languages": ["Telugu", "Hindi", "English"],
        "rating": 4.8,
        "isOnline": True,
        "responseTime": "< 5 min",
        "phone": "+91-9876543210",
    },
    {
        "id": 2,
        "name": "Smt. Lakshmi Devi",
        "category": "agronomist",
        "specialty": "Organic Farming Expert",
        "experience": "10+ years",
        "languages": ["Telugu", "English"],
        "rating": 4.6,
        "isOnline": False,
        "responseTime": "< 30 min",
        "phone": "+91-9876543211",
    },
    {
        "id": 3,
        "name": "Market Connect",
        "category": "buyer",
        "specialty": "Direct Sales Desk",
        "experience": "Bulk buyers network",
        "languages": ["Hindi", "English"],
        "rating": 4.4,
        "isOnline": True,
        "responseTime": "< 15 min",
        "phone": "+91-9876543212",
    },
    {
        "id": 4,
        "name": "Scheme Advisor",
        "category": "scheme_advisor",
        "specialty": "Government Schemes & Subsidies",
        "experience": "PM-KISAN, PMFBY",
        "languages": ["Hindi", "Telugu", "English"],
        "rating": 4.5,
        "isOnline": True,
        "responseTime": "< 10 min",
        "phone": "1800-180-1551",
    },
]


def detect_disease(crop_name: Optional[str] = None, rng: random.Random = _random) -> Dict[str, Any]:
    """Pick a disease for the crop (tomato when unknown) with 75-95% confidence."""
    key = (crop_name or "").strip().lower()
    candidates = DISEASES.get(key, DISEASES[DEFAULT_DISEASE_CROP])
    disease = rng.choice(candidates)
    return {
        "detectedDisease": disease,
        "confidence": round(75 + rng.random() * 20, 2),
        "treatment": TREATMENTS.get(disease, DEFAULT_TREATMENT),
    }


def sample_weather_alert(location: str) -> Dict[str, Any]:
    return {
        "location": location,
        "alertType": "rain",
        "severity": "medium",
        "message": "Moderate rainfall expected in the next 24 hours",
        "messageHindi": "अगले 24 घंटों में मध्यम वर्षा की संभावना",
        "messageTelugu": "రాబోయే 24 గంటల్లో మోస్తరు వర్షం అవకాశం",
        "validUntil": utcnow() + timedelta(hours=24),
    }


def synthetic_forecast(location: str, days: int = 7, rng: random.Random = _random) -> Dict[str, Any]:
    today = utcnow().date()
    daily = []
    for i in range(days):
        condition, icon = rng.choice(CONDITIONS)
        daily.append({
            "date": (today + timedelta(days=i)).isoformat(),
            "tempMax": round(30 + rng.random() * 5, 1),
            "tempMin": round(20 + rng.random() * 5, 1),
            "condition": condition,
            "precipitation": round(rng.random() * 100, 1),
            "icon": icon,
        })
    return {
        "location": location,
        "mock": True,
        "current": {
            "temperature": round(28 + rng.random() * 5, 1),
            "humidity": round(60 + rng.random() * 20, 1),
            "windSpeed": round(10 + rng.random() * 10, 1),
            "condition": "Partly Cloudy",
            "icon": "⛅",
        },
        "daily": daily,
    }


def openweather_forecast(location: str, api_key: str) -> Dict[str, Any]:
    """Daily summary built from OpenWeather's 3-hourly forecast. Raises on HTTP errors."""
    url = "https://api.openweathermap.org/data/2.5/forecast"
    r = requests.get(url, params={"q": location, "appid": api_key, "units": "metric"}, timeout=10)
    r.raise_for_status()
    data = r.json()
    curr = data["list"][0]

    by_day: Dict[str, List[Dict[str, Any]]] = {}
    for item in data["list"]:
        by_day.setdefault(item["dt_txt"][:10], []).append(item)

    daily = []
    for day, items in by_day.items():
        daily.append({
            "date": day,
            "tempMax": max(i["main"]["temp_max"] for i in items),
            "tempMin": min(i["main"]["temp_min"] for i in items),
            "condition": items[len(items) // 2]["weather"][0]["main"],
            "precipitation": round(sum(i.get("rain", {}).get("3h", 0) for i in items), 1),
        })
    return {
        "location": location,
        "mock": False,
        "current": {
            "temperature": curr["main"]["temp"],
            "humidity": curr["main"]["humidity"],
            "windSpeed": curr.get("wind", {}).get("speed"),
            "condition": curr["weather"][0]["description"],
        },
        "daily": daily,
    }


def predict_prices(crop_id: str, base_price: float, days: int = 7,
                   rng: random.Random = _random) -> Dict[str, Any]:
    """Random walk of at most 2% a day from the latest known price."""
    price = base_price
    points = []
    today = utcnow().date()
    for i in range(1, days + 1):
        price = max(0.0, price * (1 + rng.uniform(-0.02, 0.02)))
        points.append({"date": (today + timedelta(days=i)).isoformat(), "price": round(price, 2)})

    final = points[-1]["price"] if points else base_price
    change = round((final - base_price) / base_price * 100, 2) if base_price else 0.0
    if change > 1:
        trend = "up"
    elif change < -1:
        trend = "down"
    else:
        trend = "stable"
    return {
        "cropId": crop_id,
        "currentPrice": base_price,
        "predictions": points,
        "expectedChange": change,
        "trend": trend,
        "confidence": round(70 + rng.random() * 20, 2),
        "mock": True,
    }


def farm_analytics(user_id: str, listings: List[Dict[str, Any]]) -> Dict[str, Any]:
    active = [l for l in listings if l.get("isActive")]
    return {
        "userId": user_id,
        "revenue": {
            "total": 348000,
            "monthly": [45000, 52000, 48000, 61000, 58000, 72000],
            "growth": 60,
        },
        "crops": {
            "diversity": 6,
            "yields": [
                {"name": "Rice", "current": 4.2, "target": 5.0, "unit": "tons/hectare"},
                {"name": "Wheat", "current": 3.8, "target": 4.5, "unit": "tons/hectare"},
                {"name": "Cotton", "current": 2.1, "target": 2.5, "unit": "tons/hectare"},
            ],
        },
        "metrics": {
            "landUtilization": 87,
            "waterEfficiency": 76,
            "profitMargin": 42,
        },
        "listings": {
            "total": len(listings),
            "active": len(active),
            "listedValue": round(sum(l["quantity"] * l["pricePerUnit"] for l in active), 2),
        },
    }
