import asyncio
import json
import random
import time
from datetime import date

from models.ledger import DailyStat, Product, StockSeverity
from models.forecast import (
    ForecastResult,
    ForecastService,
    ForecastStatus,
    build_provider,
    build_request,
    generate_sales_forecast,
    mock_forecast,
)

HISTORY = [DailyStat(date=f"2025-09-{d:02d}", sales=5000 + d, transactions=10, customers=12) for d in range(1, 10)]
PRODUCTS = [Product(id=str(i), name=f"P{i}", price=10, stock=i) for i in range(12)]

GOOD_RESPONSE = {
    "forecast": [
        {"day": d, "predictedSales": 6000, "predictedProfit": 1500, "confidence": 80}
        for d in ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    ],
    "stockAlerts": [{"productName": "P1", "daysRemaining": 2, "severity": "critical"}],
}


class FakeProvider:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.requests = []

    def predict(self, request):
        self.requests.append(request)
        if self.exc:
            raise self.exc
        return self.response


def test_request_caps_history_and_stock():
    req = build_request(HISTORY, PRODUCTS)
    assert len(req["history"]) == 7
    assert req["history"][-1] == {"date": "2025-09-09", "sales": 5009}
    assert len(req["stock"]) == 10
    assert req["stock"][0] == {"name": "P0", "stock": 0}


def test_new_shop_mock_ramps_with_low_confidence():
    result = mock_forecast([], today=date(2025, 9, 1), rng=random.Random(7))
    assert len(result.forecast) == 7
    assert result.stock_alerts == []
    assert [d.day for d in result.forecast] == ["Tue", "Wed", "Thu", "Fri", "Sat", "Sun", "Mon"]
    for idx, d in enumerate(result.forecast):
        assert d.confidence == 40
        assert idx * 50 <= d.predicted_sales < idx * 50 + 200
        assert d.predicted_profit == int(d.predicted_sales * 0.25)


def test_existing_shop_mock_confidence_range():
    result = mock_forecast(HISTORY, rng=random.Random(3))
    for d in result.forecast:
        assert 85 <= d.confidence < 95
        assert 5500 <= d.predicted_sales < 7000


def test_provider_result_is_used():
    provider = FakeProvider(GOOD_RESPONSE)
    result = generate_sales_forecast(HISTORY, PRODUCTS, provider)
    assert result.source == "provider"
    assert len(result.forecast) == 7
    assert result.stock_alerts[0].severity is StockSeverity.CRITICAL
    assert len(provider.requests) == 1


def test_provider_failures_fall_back_to_mock():
    for provider in [
        FakeProvider(exc=RuntimeError("quota")),
        FakeProvider({"forecast": []}),
        FakeProvider({"stockAlerts": []}),
        FakeProvider({"forecast": [{"day": "Mon"}]}),
        FakeProvider({"forecast": GOOD_RESPONSE["forecast"][:1]}),
        FakeProvider({"forecast": GOOD_RESPONSE["forecast"], "stockAlerts": [{"productName": "x", "daysRemaining": 1, "severity": "urgent"}]}),
    ]:
        result = generate_sales_forecast(HISTORY, PRODUCTS, provider, rng=random.Random(1))
        assert result.source == "mock"
        assert len(result.forecast) == 7
        assert result.stock_alerts == []


def test_build_provider_without_key(monkeypatch):
    monkeypatch.delenv("DAILYDASH_TEST_KEY", raising=False)
    assert build_provider({"api_key_env": "DAILYDASH_TEST_KEY"}) is None
    monkeypatch.setenv("DAILYDASH_TEST_KEY", "secret")
    assert build_provider({"api_key_env": "DAILYDASH_TEST_KEY"}, offline=True) is None


def test_service_state_machine():
    service = ForecastService(provider=FakeProvider(GOOD_RESPONSE), min_display_seconds=0)
    assert service.status is ForecastStatus.UNSTARTED
    assert asyncio.run(service.refresh(HISTORY, PRODUCTS)) is ForecastStatus.READY
    assert service.to_dict()["source"] == "provider"
    # refresh from READY goes through LOADING again and recovers via fallback
    service.provider = FakeProvider(exc=RuntimeError("down"))
    assert asyncio.run(service.refresh(HISTORY, PRODUCTS)) is ForecastStatus.READY
    assert service.result.source == "mock"


def test_service_fails_on_empty_forecast(monkeypatch):
    import models.forecast as fc

    monkeypatch.setattr(fc, "generate_sales_forecast", lambda *a, **k: ForecastResult())
    service = ForecastService(min_display_seconds=0)
    assert asyncio.run(service.refresh([], [])) is ForecastStatus.FAILED
    assert service.error == "Could not generate forecast data."

    def boom(*a, **k):
        raise RuntimeError("broken")

    monkeypatch.setattr(fc, "generate_sales_forecast", boom)
    assert asyncio.run(service.refresh([], [])) is ForecastStatus.FAILED
    assert service.error == "Forecast service temporarily unavailable."


def test_short_provider_forecast_is_replaced_by_mock():
    provider = FakeProvider({"forecast": GOOD_RESPONSE["forecast"][:1], "stockAlerts": []})
    result = generate_sales_forecast(HISTORY, PRODUCTS, provider, rng=random.Random(2))
    assert result.source == "mock"
    assert len(result.forecast) == 7


def test_gemini_provider_requests_strict_schema(monkeypatch):
    import models.forecast as fc

    calls = []

    class FakeModels:
        def generate_content(self, model, contents, config):
            calls.append({"model": model, "contents": contents, "config": config})
            return type("Response", (), {"text": json.dumps(GOOD_RESPONSE)})()

    class FakeClient:
        def __init__(self, api_key):
            self.api_key = api_key
            self.models = FakeModels()

    monkeypatch.setattr(fc.genai, "Client", FakeClient)
    provider = fc.GeminiForecastProvider("secret", model="gemini-test")
    result = generate_sales_forecast(HISTORY, PRODUCTS, provider)

    assert result.source == "provider"
    assert provider.client.api_key == "secret"
    config = calls[0]["config"]
    assert calls[0]["model"] == "gemini-test"
    assert config.response_mime_type == "application/json"
    assert config.response_schema == fc.RESPONSE_SCHEMA
    assert "P9" in calls[0]["contents"] and "P10" not in calls[0]["contents"]


class DelayedProvider:
    """Answers slowly for short histories, quickly for long ones."""

    def predict(self, request):
        slow = len(request["history"]) == 1
        time.sleep(0.3 if slow else 0.05)
        label = "slow" if slow else "fast"
        return {
            "forecast": [
                {"day": f"{label}{i}", "predictedSales": 100, "predictedProfit": 25, "confidence": 50}
                for i in range(7)
            ],
            "stockAlerts": [],
        }


def test_concurrent_refreshes_last_to_finish_wins():
    service = ForecastService(provider=DelayedProvider(), min_display_seconds=0)
    seen = []

    async def watch():
        await asyncio.sleep(0.02)
        seen.append((service.status, None))
        await asyncio.sleep(0.13)
        seen.append((service.status, service.result.forecast[0].day))

    async def run():
        await asyncio.gather(
            service.refresh(HISTORY[:1], PRODUCTS),
            service.refresh(HISTORY, PRODUCTS),
            watch(),
        )

    asyncio.run(run())
    # both in flight, then the quick one is displayed while the slow one still runs
    assert seen == [(ForecastStatus.LOADING, None), (ForecastStatus.READY, "fast0")]
    assert service.status is ForecastStatus.READY
    assert service.result.forecast[0].day == "slow0"


def test_status_is_loading_while_refresh_in_flight():
    service = ForecastService(provider=DelayedProvider(), min_display_seconds=0.2)
    seen = []

    async def watch():
        await asyncio.sleep(0.02)
        seen.append(service.status)

    async def run():
        await asyncio.gather(service.refresh(HISTORY, PRODUCTS), watch())

    asyncio.run(run())
    assert seen == [ForecastStatus.LOADING]
    assert service.status is ForecastStatus.READY
    assert service.result.forecast[0].day == "fast0"
