"""
Seven-day sales/profit forecast with stock run-out alerts.

A remote provider (Gemini) is tried first when one is configured. When there
is no provider, or it raises, or it answers without a usable `forecast`
array, a local heuristic generator is used instead. Provider errors never
reach the caller.
"""
import asyncio
import json
import logging
import math
import os
import random
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence

from google import genai
from google.genai import types

from models.ledger import DailyStat, DayPrediction, Product, StockAlert

LOG = logging.getLogger(__name__)

FORECAST_DAYS = 7
HISTORY_WINDOW = 7
STOCK_SAMPLE = 10
MOCK_PROFIT_RATIO = 0.25
NEW_SHOP_CONFIDENCE = 40

PROMPT_TEMPLATE = """
Predict daily sales AND approx profit (assume ~20-30% margin) for next 7 days based on this history: {history}.
Check stock levels: {stock}.
Return JSON with 'forecast' (day: string like Mon/Tue, predictedSales: number, predictedProfit: number, confidence: number 0-100)
and 'stockAlerts' (productName: string, daysRemaining: number, severity: 'low' | 'critical').
Focus on realistic trends.
"""

RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "forecast": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "day": types.Schema(type=types.Type.STRING),
                    "predictedSales": types.Schema(type=types.Type.NUMBER),
                    "predictedProfit": types.Schema(type=types.Type.NUMBER),
                    "confidence": types.Schema(type=types.Type.NUMBER),
                },
                required=["day", "predictedSales", "predictedProfit", "confidence"],
            ),
        ),
        "stockAlerts": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "productName": types.Schema(type=types.Type.STRING),
                    "daysRemaining": types.Schema(type=types.Type.NUMBER),
                    "severity": types.Schema(type=types.Type.STRING, enum=["low", "critical"]),
                },
                required=["productName", "daysRemaining", "severity"],
            ),
        ),
    },
    required=["forecast"],
)


class ProviderError(Exception):
    pass


class ForecastProvider(Protocol):
    def predict(self, request: Dict) -> Dict:
        ...


@dataclass
class ForecastResult:
    forecast: List[DayPrediction] = field(default_factory=list)
    stock_alerts: List[StockAlert] = field(default_factory=list)
    source: str = "mock"

    def to_dict(self) -> Dict:
        return {
            "forecast": [d.to_dict() for d in self.forecast],
            "stockAlerts": [a.to_dict() for a in self.stock_alerts],
            "source": self.source,
        }


def build_request(history: Sequence[DailyStat], stock: Sequence[Product]) -> Dict:
    return {
        "history": [{"date": h.date, "sales": h.sales} for h in list(history)[-HISTORY_WINDOW:]],
        "stock": [{"name": p.name, "stock": p.stock} for p in list(stock)[:STOCK_SAMPLE]],
    }


class GeminiForecastProvider:
    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        self.client = genai.Client(api_key=api_key)
        self.model = model

    def predict(self, request: Dict) -> Dict:
        prompt = PROMPT_TEMPLATE.format(
            history=json.dumps(request["history"]),
            stock=json.dumps(request["stock"], ensure_ascii=False),
        )
        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=RESPONSE_SCHEMA,
            ),
        )
        text = (response.text or "").strip()
        if not text:
            raise ProviderError("No response text from forecast provider")
        return json.loads(text)


def build_provider(forecast_cfg: Dict, offline: bool = False) -> Optional[ForecastProvider]:
    """Gemini provider when an API key is set and offline mode is off."""
    if offline:
        return None
    api_key = os.getenv(forecast_cfg.get("api_key_env", "GEMINI_API_KEY"), "")
    if not api_key:
        LOG.warning("No API key provided for forecasting. Using mock forecast data.")
        return None
    return GeminiForecastProvider(api_key, forecast_cfg.get("model", "gemini-2.5-flash"))


def parse_response(data) -> ForecastResult:
    if not isinstance(data, dict) or not isinstance(data.get("forecast"), list) or not data["forecast"]:
        raise ProviderError("Invalid JSON structure")
    if len(data["forecast"]) != FORECAST_DAYS:
        raise ProviderError(f"Expected {FORECAST_DAYS} forecast days, got {len(data['forecast'])}")
    try:
        forecast = [DayPrediction.from_dict(d) for d in data["forecast"]]
        alerts = [StockAlert.from_dict(a) for a in data.get("stockAlerts") or []]
    except (ValueError, TypeError, AttributeError) as e:
        raise ProviderError(f"Invalid forecast entry: {e}") from e
    return ForecastResult(forecast=forecast, stock_alerts=alerts, source="provider")


def day_labels(today: Optional[date] = None) -> List[str]:
    today = today or date.today()
    return [(today + timedelta(days=i)).strftime("%a") for i in range(1, FORECAST_DAYS + 1)]


def mock_forecast(history: Sequence[DailyStat], today: Optional[date] = None, rng=None) -> ForecastResult:
    """Heuristic forecast. A shop with no history ramps up from zero at low confidence."""
    rng = rng or random
    new_shop = len(history) == 0
    forecast = []
    for idx, day in enumerate(day_labels(today)):
        if new_shop:
            sales = rng.randint(0, 199) + idx * 50
            confidence = NEW_SHOP_CONFIDENCE
        else:
            sales = 5500 + rng.randint(0, 1499)
            confidence = 85 + rng.randint(0, 9)
        forecast.append(DayPrediction(
            day=day,
            predicted_sales=sales,
            predicted_profit=math.floor(sales * MOCK_PROFIT_RATIO),
            confidence=confidence,
        ))
    # no stock alerts are fabricated without a provider
    return ForecastResult(forecast=forecast, stock_alerts=[], source="mock")


def generate_sales_forecast(
    history: Sequence[DailyStat],
    stock: Sequence[Product],
    provider: Optional[ForecastProvider] = None,
    today: Optional[date] = None,
    rng=None,
) -> ForecastResult:
    if provider is None:
        return mock_forecast(history, today, rng)
    try:
        return parse_response(provider.predict(build_request(history, stock)))
    except Exception:
        LOG.exception("Forecast provider failed; using mock forecast")
        return mock_forecast(history, today, rng)


class ForecastStatus(str, Enum):
    UNSTARTED = "unstarted"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ForecastService:
    """Holds the displayed forecast and drives UNSTARTED -> LOADING -> READY|FAILED.

    Refreshes are not deduplicated: whichever refresh finishes last sets the
    displayed result.
    """

    def __init__(self, provider: Optional[ForecastProvider] = None, min_display_seconds: float = 0.8, rng=None):
        self.provider = provider
        self.min_display_seconds = min_display_seconds
        self.rng = rng
        self.status = ForecastStatus.UNSTARTED
        self.result = ForecastResult()
        self.error: Optional[str] = None

    async def refresh(self, history: Sequence[DailyStat], products: Sequence[Product]) -> ForecastStatus:
        self.status = ForecastStatus.LOADING
        self.error = None
        history = list(history)
        products = list(products)
        try:
            result, _ = await asyncio.gather(
                asyncio.to_thread(generate_sales_forecast, history, products, self.provider, None, self.rng),
                asyncio.sleep(self.min_display_seconds),
            )
        except Exception:
            LOG.exception("Error fetching forecast")
            self.error = "Forecast service temporarily unavailable."
            self.status = ForecastStatus.FAILED
            return self.status

        if result.forecast:
            self.result = result
            self.status = ForecastStatus.READY
        else:
            self.error = "Could not generate forecast data."
            self.status = ForecastStatus.FAILED
        return self.status

    def to_dict(self) -> Dict:
        payload = {"status": self.status.value, "error": self.error}
        payload.update(self.result.to_dict())
        return payload
