"""
Tests for the webhook rate limiter
"""
from datetime import datetime, timedelta

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from facility_ledger.core.rate_limit import RateLimiter, RateLimitMiddleware


def _app(enabled=True):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, per_minute=2, enabled=enabled)

    @app.post("/api/v1/webhooks/accountants")
    async def webhook():
        return {"success": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


def test_third_call_in_a_minute_is_rejected():
    client = TestClient(_app())
    headers = {"x-api-key": "key-aaaaaaaa"}

    assert client.post("/api/v1/webhooks/accountants", headers=headers).status_code == 200
    assert client.post("/api/v1/webhooks/accountants", headers=headers).status_code == 200
    response = client.post("/api/v1/webhooks/accountants", headers=headers)

    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) >= 1
    assert response.json()["success"] is False
    assert set(response.json()["humanReadable"]) == {"en", "ar"}


def test_keys_are_counted_separately():
    client = TestClient(_app())

    for _ in range(2):
        client.post("/api/v1/webhooks/accountants", headers={"x-api-key": "key-aaaaaaaa"})

    response = client.post("/api/v1/webhooks/accountants", headers={"x-api-key": "key-bbbbbbbb"})
    assert response.status_code == 200


def test_disabled_limiter():
    client = TestClient(_app(enabled=False))

    for _ in range(5):
        assert client.post("/api/v1/webhooks/accountants").status_code == 200


def test_get_requests_are_not_limited():
    client = TestClient(_app())

    for _ in range(5):
        assert client.get("/health").status_code == 200


def _webhook_request(forwarded_for):
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/api/v1/webhooks/accountants",
        "query_string": b"",
        "headers": [(b"x-forwarded-for", forwarded_for.encode())],
        "client": ("testclient", 50000),
    })


def test_idle_keys_are_evicted():
    limiter = RateLimiter(per_minute=2)
    for n in range(50):
        assert limiter.is_allowed(_webhook_request(f"10.0.0.{n}"))[0]
    assert len(limiter._requests) == 50

    stale = datetime.utcnow() - timedelta(seconds=120)
    for key in limiter._requests:
        limiter._requests[key] = [stale]
    limiter._last_sweep = stale

    assert limiter.is_allowed(_webhook_request("10.0.0.200"))[0]

    assert list(limiter._requests) == ["/api/v1/webhooks/accountants:10.0.0.200:anonymous"]
