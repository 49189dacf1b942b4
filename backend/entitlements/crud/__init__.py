"""CRUD 操作模块"""
from .quota import (
    get_counter as get_quota_counter,
)
from .quota import (
    get_or_create_counter as get_or_create_quota_counter,
)
from .quota import (
    increment_counter as increment_quota_counter,
)
from .quota import (
    list_counters as list_quota_counters,
)
from .user import (
    apply_subscription_state,
)
from .user import (
    create as create_user,
)
from .user import (
    get as get_user,
)
from .user import (
    get_by_device_id as get_user_by_device_id,
)
from .user import (
    get_by_revenuecat_id as get_user_by_revenuecat_id,
)
from .user import (
    get_or_create_by_device_id as get_or_create_user_by_device_id,
)
from .webhook_events import (
    DuplicateEventError,
)
from .webhook_events import (
    get_event as get_webhook_event,
)
from .webhook_events import (
    list_for_external_user as list_webhook_events_for_external_user,
)
from .webhook_events import (
    record_event as record_webhook_event,
)

__all__ = [
    "DuplicateEventError",
    "apply_subscription_state",
    "create_user",
    "get_user",
    "get_user_by_device_id",
    "get_user_by_revenuecat_id",
    "get_or_create_user_by_device_id",
    "get_webhook_event",
    "record_webhook_event",
    "list_webhook_events_for_external_user",
    "get_quota_counter",
    "get_or_create_quota_counter",
    "increment_quota_counter",
    "list_quota_counters",
]
