from __future__ import annotations

import os

from fastapi.testclient import TestClient

WEBHOOK_SECRET = os.environ["REVENUECAT_WEBHOOK_SECRET"]
WEBHOOK_URL = "/api/v1/subscription/webhook"


def login(client: TestClient, device_id: str = "device_test_1", **extra) -> tuple[dict[str, str], str]:
    r = client.post("/api/v1/auth/login", json={"device_id": device_id, **extra})
    assert r.status_code == 200
    body = r.json()
    assert body["code"] == 0
    headers = {"Authorization": f"Bearer {body['data']['access_token']}"}
    return headers, body["data"]["user"]["id"]


def rc_event(
    event_id: str,
    event_type: str,
    app_user_id: str,
    *,
    product_id: str = "premium_monthly",
    store: str = "APP_STORE",
    expiration_at_ms: int | None = 1_893_456_000_000,  # 2030-01-01
    event_timestamp_ms: int | None = None,
    **extra,
) -> dict:
    event = {
        "id": event_id,
        "type": event_type,
        "app_user_id": app_user_id,
        "original_app_user_id": app_user_id,
        "product_id": product_id,
        "store": store,
        "environment": "SANDBOX",
        "price_in_purchased_currency": 9.99,
        "currency": "USD",
        "purchased_at_ms": 1_767_225_600_000,  # 2026-01-01
        "expiration_at_ms": expiration_at_ms,
        "event_timestamp_ms": event_timestamp_ms,
        **extra,
    }
    return {"api_version": "1.0", "event": event}


def post_webhook(client: TestClient, payload: dict, *, authorization: str | None = WEBHOOK_SECRET):
    headers = {"Authorization": authorization} if authorization is not None else {}
    return client.post(WEBHOOK_URL, json=payload, headers=headers)
