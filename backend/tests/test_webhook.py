from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from entitlements import crud
from entitlements.api.errors import AppError
from entitlements.core.config import settings
from entitlements.models import User, WebhookEvent
from entitlements.services import entitlement_resolver, transitions
from entitlements.services.transitions import ensure_utc
from tests.utils import WEBHOOK_SECRET, WEBHOOK_URL, post_webhook, rc_event


def _user(db, device_id: str = "device_wh_1", revenuecat_id: str | None = "rc_user_1") -> User:
    user = crud.create_user(session=db, device_id=device_id)
    if revenuecat_id:
        user.revenuecat_app_user_id = revenuecat_id
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def _reload(db, user_id: str) -> User:
    db.expire_all()
    user = db.get(User, user_id)
    assert user is not None
    return user


def test_initial_purchase_activates_premium(client, db):
    user = _user(db)

    r = post_webhook(client, rc_event("evt_1", "INITIAL_PURCHASE", "rc_user_1"))
    assert r.status_code == 200
    body = r.json()
    assert body["code"] == 0
    assert body["data"] == {"received": True, "duplicate": False, "user_found": True}

    user = _reload(db, user.id)
    assert user.plan == "premium"
    assert user.subscription_status == "active"
    assert user.subscription_product_id == "premium_monthly"
    assert user.subscription_store == "app_store"
    assert ensure_utc(user.subscription_expires_at) == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert user.subscription_started_at is not None
    assert user.subscription_version == 1

    event = db.get(WebhookEvent, "evt_1")
    assert event is not None
    assert event.resolved_user_id == user.id
    assert event.price_cents == 999
    assert event.store == "APP_STORE"
    assert event.raw_payload["event"]["id"] == "evt_1"


def test_duplicate_event_is_acknowledged_without_writes(client, db):
    user = _user(db)
    payload = rc_event("evt_dup", "INITIAL_PURCHASE", "rc_user_1")

    assert post_webhook(client, payload).json()["data"]["duplicate"] is False
    version = _reload(db, user.id).subscription_version

    r = post_webhook(client, payload)
    assert r.status_code == 200
    assert r.json()["data"]["duplicate"] is True

    assert _reload(db, user.id).subscription_version == version
    rows = db.exec(select(WebhookEvent).where(WebhookEvent.event_id == "evt_dup")).all()
    assert len(rows) == 1


def test_duplicate_event_returns_stored_result(db):
    user = _user(db)
    payload = rc_event("evt_dup_svc", "RENEWAL", "rc_user_1")

    first = entitlement_resolver.handle(session=db, payload=payload)
    second = entitlement_resolver.handle(session=db, payload=payload)

    assert first.processed_newly is True
    assert second.processed_newly is False
    assert second.user_id == user.id
    assert _reload(db, user.id).subscription_version == 1


def test_expiration_after_purchase_keeps_started_at(client, db):
    user = _user(db)
    post_webhook(client, rc_event("evt_a", "INITIAL_PURCHASE", "rc_user_1"))
    started_at = _reload(db, user.id).subscription_started_at
    assert started_at is not None

    r = post_webhook(client, rc_event("evt_b", "EXPIRATION", "rc_user_1"))
    assert r.status_code == 200

    user = _reload(db, user.id)
    assert user.plan == "free"
    assert user.subscription_status == "expired"
    assert user.subscription_started_at == started_at
    # 停用事件不改到期时间
    assert ensure_utc(user.subscription_expires_at) == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_renewal_does_not_reset_started_at(client, db):
    user = _user(db)
    post_webhook(client, rc_event("evt_s1", "INITIAL_PURCHASE", "rc_user_1"))
    started_at = _reload(db, user.id).subscription_started_at

    post_webhook(
        client,
        rc_event("evt_s2", "RENEWAL", "rc_user_1", expiration_at_ms=1_924_992_000_000),  # 2031-01-01
    )

    user = _reload(db, user.id)
    assert user.subscription_started_at == started_at
    assert ensure_utc(user.subscription_expires_at) == datetime(2031, 1, 1, tzinfo=timezone.utc)


def test_last_applied_event_wins(client, db):
    a = _user(db, device_id="device_order_a", revenuecat_id="rc_order_a")
    b = _user(db, device_id="device_order_b", revenuecat_id="rc_order_b")

    post_webhook(client, rc_event("evt_oa1", "INITIAL_PURCHASE", "rc_order_a"))
    post_webhook(client, rc_event("evt_oa2", "EXPIRATION", "rc_order_a"))

    post_webhook(client, rc_event("evt_ob1", "EXPIRATION", "rc_order_b"))
    post_webhook(client, rc_event("evt_ob2", "INITIAL_PURCHASE", "rc_order_b"))

    assert _reload(db, a.id).plan == "free"
    assert _reload(db, b.id).plan == "premium"


def test_event_order_guard_skips_stale_events(client, db, monkeypatch):
    monkeypatch.setattr(settings, "SUBSCRIPTION_ENFORCE_EVENT_ORDER", True)
    user = _user(db)

    post_webhook(
        client,
        rc_event("evt_new", "EXPIRATION", "rc_user_1", event_timestamp_ms=1_770_000_000_000),
    )
    r = post_webhook(
        client,
        rc_event("evt_old", "RENEWAL", "rc_user_1", event_timestamp_ms=1_760_000_000_000),
    )
    assert r.status_code == 200
    assert r.json()["data"]["duplicate"] is False

    user = _reload(db, user.id)
    assert user.plan == "free"
    assert user.subscription_status == "expired"
    # 过期事件仍然落库审计
    assert db.get(WebhookEvent, "evt_old") is not None


def test_billing_issue_keeps_plan(client, db):
    user = _user(db)
    post_webhook(client, rc_event("evt_p", "INITIAL_PURCHASE", "rc_user_1"))
    post_webhook(client, rc_event("evt_bi", "BILLING_ISSUE", "rc_user_1"))

    user = _reload(db, user.id)
    assert user.plan == "premium"
    assert user.subscription_status == "canceled"


def test_unclassified_event_is_recorded_only(client, db):
    user = _user(db)

    r = post_webhook(client, rc_event("evt_test", "TEST", "rc_user_1"))
    assert r.status_code == 200

    user = _reload(db, user.id)
    assert user.plan == "free"
    assert user.subscription_version == 0
    assert db.get(WebhookEvent, "evt_test") is not None


def test_unknown_user_is_acknowledged_and_recorded(client, db):
    r = post_webhook(client, rc_event("evt_nouser", "INITIAL_PURCHASE", "rc_missing"))
    assert r.status_code == 200
    assert r.json()["data"]["user_found"] is False

    event = db.get(WebhookEvent, "evt_nouser")
    assert event is not None
    assert event.resolved_user_id is None
    assert db.exec(select(User).where(User.plan == "premium")).first() is None


def test_unknown_user_result(db):
    result = entitlement_resolver.handle(
        session=db, payload=rc_event("evt_nouser_svc", "RENEWAL", "rc_missing")
    )
    assert result.processed_newly is True
    assert result.user_id is None
    assert result.error == entitlement_resolver.USER_NOT_FOUND


def test_user_matched_by_primary_key_and_linked(client, db):
    user = _user(db, revenuecat_id=None)

    r = post_webhook(client, rc_event("evt_uuid", "INITIAL_PURCHASE", user.id))
    assert r.json()["data"]["user_found"] is True

    user = _reload(db, user.id)
    assert user.plan == "premium"
    assert user.revenuecat_app_user_id == user.id


def test_deactivation_keeps_external_link(client, db):
    user = _user(db)
    post_webhook(client, rc_event("evt_l1", "INITIAL_PURCHASE", "rc_user_1", original_transaction_id="tx_1"))
    post_webhook(client, rc_event("evt_l2", "EXPIRATION", "rc_user_1"))

    user = _reload(db, user.id)
    assert user.revenuecat_app_user_id == "rc_user_1"
    assert user.revenuecat_original_transaction_id == "tx_1"


@pytest.mark.parametrize(
    "authorization",
    [WEBHOOK_SECRET, f"Bearer {WEBHOOK_SECRET}"],
)
def test_webhook_accepts_raw_or_bearer_secret(client, db, authorization):
    _user(db)
    r = post_webhook(
        client, rc_event("evt_auth", "INITIAL_PURCHASE", "rc_user_1"), authorization=authorization
    )
    assert r.status_code == 200


@pytest.mark.parametrize("authorization", [None, "wrong", "Bearer wrong"])
def test_webhook_rejects_bad_authorization(client, db, authorization):
    r = post_webhook(
        client, rc_event("evt_noauth", "INITIAL_PURCHASE", "rc_user_1"), authorization=authorization
    )
    assert r.status_code == 401
    assert r.json()["code"] == 401001
    assert db.get(WebhookEvent, "evt_noauth") is None


def test_webhook_rejects_malformed_json(client):
    r = client.post(
        WEBHOOK_URL,
        content=b"not json",
        headers={"Authorization": WEBHOOK_SECRET, "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["code"] == 400001


@pytest.mark.parametrize(
    ("payload", "code"),
    [
        ({"foo": 1}, 400001),
        ({"event": "nope"}, 400001),
        ([1, 2, 3], 400001),
        ({"event": {"type": "RENEWAL"}}, 400002),
        ({"event": {"id": "evt_x"}}, 400002),
    ],
)
def test_webhook_rejects_invalid_payload(client, payload, code):
    r = client.post(WEBHOOK_URL, json=payload, headers={"Authorization": WEBHOOK_SECRET})
    assert r.status_code == 400
    assert r.json()["code"] == code


def test_persistence_failure_allows_redelivery(client, db, monkeypatch):
    user = _user(db)
    payload = rc_event("evt_fail", "INITIAL_PURCHASE", "rc_user_1")

    def _boom(**_kwargs):
        raise SQLAlchemyError("database is gone")

    with monkeypatch.context() as m:
        m.setattr(crud, "apply_subscription_state", _boom)
        r = post_webhook(client, payload)
    assert r.status_code == 500
    assert r.json()["code"] == 500001

    # 事件记录随状态修改一起回滚，provider 重投时重新处理
    db.expire_all()
    assert db.get(WebhookEvent, "evt_fail") is None

    r = post_webhook(client, payload)
    assert r.status_code == 200
    assert r.json()["data"]["duplicate"] is False
    assert _reload(db, user.id).plan == "premium"


def test_webhook_health(client):
    r = client.get(WEBHOOK_URL)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "ok"


def test_version_conflict_is_retried_on_fresh_state(db):
    user = _user(db)
    calls = {"n": 0}

    def _transform(state):
        calls["n"] += 1
        if calls["n"] == 1:
            # 模拟另一条写入路径抢先提交
            db.exec(
                update(User)
                .where(User.id == user.id)
                .values(subscription_version=User.subscription_version + 1, subscription_product_id="other")
            )
        return transitions.activate(
            state, product_id=state.product_id, store="app_store", expires_at=None, now=datetime.now(timezone.utc)
        )

    crud.apply_subscription_state(session=db, user=user, transform=_transform)

    assert calls["n"] == 2
    user = _reload(db, user.id)
    assert user.plan == "premium"
    # 第二次计算基于重新读取的状态
    assert user.subscription_product_id == "other"
    assert user.subscription_version == 2


def test_version_conflict_gives_up_after_retries(db):
    user = _user(db)

    def _transform(state):
        db.exec(
            update(User)
            .where(User.id == user.id)
            .values(subscription_version=User.subscription_version + 1)
        )
        return transitions.deactivate(state)

    with pytest.raises(AppError) as exc_info:
        crud.apply_subscription_state(session=db, user=user, transform=_transform)
    assert exc_info.value.code == 409001
    assert exc_info.value.status_code == 409


def test_list_events_for_external_user(client, db):
    _user(db)
    post_webhook(client, rc_event("evt_h1", "INITIAL_PURCHASE", "rc_user_1"))
    post_webhook(client, rc_event("evt_h2", "RENEWAL", "rc_user_1"))

    events = crud.list_webhook_events_for_external_user(session=db, external_user_id="rc_user_1")
    assert {e.event_id for e in events} == {"evt_h1", "evt_h2"}


@pytest.mark.parametrize("secret", [None, ""])
def test_webhook_without_configured_secret_is_refused(client, db, monkeypatch, secret):
    monkeypatch.setattr(settings, "REVENUECAT_WEBHOOK_SECRET", secret)
    user = _user(db, revenuecat_id=None)

    r = post_webhook(client, rc_event("evt_forged", "INITIAL_PURCHASE", user.id), authorization=None)
    assert r.status_code == 500
    assert r.json()["code"] == 500003

    assert _reload(db, user.id).plan == "free"
    assert db.get(WebhookEvent, "evt_forged") is None


@pytest.mark.parametrize(
    ("price", "raw"),
    [("1e400", "1e400"), ("-1e400", "-1e400"), ("NaN", "NaN"), ("1e12", 1e12)],
)
def test_unrepresentable_price_is_not_stored(client, db, price, raw):
    _user(db)
    body = json.dumps(rc_event("evt_price", "TEST", "rc_user_1", price_in_purchased_currency="__PRICE__"))
    body = body.replace('"__PRICE__"', price)

    r = client.post(
        WEBHOOK_URL,
        content=body.encode(),
        headers={"Authorization": WEBHOOK_SECRET, "Content-Type": "application/json"},
    )
    assert r.status_code == 200
    assert r.json()["code"] == 0

    event = db.get(WebhookEvent, "evt_price")
    assert event is not None
    assert event.price_cents is None
    assert event.raw_payload["event"]["price_in_purchased_currency"] == raw


def test_concurrent_duplicate_insert_is_treated_as_duplicate(client, db, monkeypatch):
    user = _user(db)
    payload = rc_event("evt_race", "INITIAL_PURCHASE", "rc_user_1")
    post_webhook(client, payload)
    version = _reload(db, user.id).subscription_version
    assert version == 1

    real_get = crud.get_webhook_event
    lookups = {"n": 0}

    def _miss_first_lookup(**kwargs):
        # 另一个请求在本次幂等检查之后、插入之前写入了同一个事件
        lookups["n"] += 1
        if lookups["n"] == 1:
            return None
        return real_get(**kwargs)

    monkeypatch.setattr(crud, "get_webhook_event", _miss_first_lookup)
    result = entitlement_resolver.handle(session=db, payload=payload)

    assert lookups["n"] == 2
    assert result.processed_newly is False
    assert result.user_id == user.id
    assert _reload(db, user.id).subscription_version == version
