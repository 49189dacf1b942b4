from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)

_lock = Lock()
_config: dict[str, Any] | None = None

_EMPTY_CONFIG: dict[str, Any] = {
    "activate_events": [],
    "deactivate_events": [],
    "billing_issue_event": "BILLING_ISSUE",
    "known_products": [],
    "plan_limits": {},
}


def get_config() -> dict[str, Any]:
    """
    Product catalogue: webhook event-type sets, known product ids and the
    per-plan monthly limits. Loaded once and cached.
    """
    global _config
    with _lock:
        if _config is not None:
            return _config

        cfg = _load_from_file()
        _config = cfg
        return cfg


def refresh_config() -> dict[str, Any]:
    global _config
    with _lock:
        _config = _load_from_file()
        return _config


def _load_from_file() -> dict[str, Any]:
    path = Path(__file__).resolve().parents[1] / "config" / "default_config.json"
    if not path.exists():
        logger.warning("Product config %s not found, using empty config", path)
        return dict(_EMPTY_CONFIG)
    cfg = {**_EMPTY_CONFIG, **json.loads(path.read_text(encoding="utf-8"))}
    validate_config(cfg)
    return cfg


def validate_config(cfg: dict[str, Any]) -> None:
    # Activation and deactivation must never both match one event type.
    overlap = set(cfg.get("activate_events", [])) & set(cfg.get("deactivate_events", []))
    if overlap:
        raise ValueError(f"Event types configured as both activate and deactivate: {sorted(overlap)}")
    billing_issue = cfg.get("billing_issue_event")
    classified = set(cfg.get("activate_events", [])) | set(cfg.get("deactivate_events", []))
    if billing_issue in classified:
        raise ValueError(f"Billing issue event {billing_issue!r} must not be in the activate/deactivate sets")


def plan_limit(cfg: dict[str, Any], plan: str, feature_type: str) -> int:
    limits = cfg.get("plan_limits", {}).get(plan, {})
    if not isinstance(limits, dict):
        return 0
    try:
        return int(limits.get(feature_type, 0))
    except (TypeError, ValueError):
        return 0
