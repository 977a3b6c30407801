"""
Cache key layout.

    {namespace}:dashboard:{data_type}:{scope}:{filter_token}

scope is "global" or "shop:{id}". filter_token is "default" when no
filter is set, otherwise sorted name=value pairs joined by ":". Keys
with different filter values never alias each other.
"""

from datetime import date, datetime
from typing import Any, Mapping, Optional

from stockpulse.cache.base import KeyValueCache


GLOBAL_SCOPE = "global"
DEFAULT_FILTER_TOKEN = "default"


def scope_key(shop_id: Optional[Any] = None) -> str:
    """Scope token for a shop partition, or the global scope."""
    if shop_id is None or shop_id == "":
        return GLOBAL_SCOPE
    return f"shop:{shop_id}"


def _format_filter_value(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def filter_token(filters: Optional[Mapping[str, Any]] = None) -> str:
    """Stable serialization of filter values; None values are skipped."""
    if not filters:
        return DEFAULT_FILTER_TOKEN
    parts = [
        f"{name}={_format_filter_value(value)}"
        for name, value in sorted(filters.items())
        if value is not None
    ]
    return ":".join(parts) if parts else DEFAULT_FILTER_TOKEN


def dashboard_key(
    cache: KeyValueCache,
    data_type: str,
    scope: str = GLOBAL_SCOPE,
    filters: Optional[Mapping[str, Any]] = None,
) -> str:
    """Generate dashboard cache key."""
    return cache.make_key("dashboard", data_type, scope, filter_token(filters))


def scope_pattern(cache: KeyValueCache, scope: str) -> str:
    """Pattern matching every dashboard entry for one scope."""
    return cache.make_key("dashboard", "*", scope, "*")
