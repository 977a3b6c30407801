"""
Cache Invalidation Service

Event-driven cache invalidation with minimal scope.
Principle: Invalidate as narrowly as possible.

Events trigger targeted invalidation:
- INVOICE_RECORDED: sales-derived slices for the shop and the global scope
- INVENTORY_CHANGED: stock-derived slices for the shop and the global scope
- TRANSFER_RECORDED: transfer slices for both shops and the global scope
- PRODUCT_UPDATED: retail value and category distribution everywhere
- MANUAL_*: administrative cache busting
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from stockpulse.cache.base import KeyValueCache
from stockpulse.cache.keys import GLOBAL_SCOPE, scope_key, scope_pattern


logger = logging.getLogger(__name__)


class CacheEvent(Enum):
    """Events that trigger cache invalidation."""

    # Data changes
    INVOICE_RECORDED = "invoice_recorded"
    INVENTORY_CHANGED = "inventory_changed"
    TRANSFER_RECORDED = "transfer_recorded"
    PRODUCT_UPDATED = "product_updated"

    # Shop lifecycle
    SHOP_ADDED = "shop_added"
    SHOP_UPDATED = "shop_updated"
    SHOP_DELETED = "shop_deleted"

    # Manual invalidation
    MANUAL_INVALIDATE_SHOP = "manual_invalidate_shop"
    MANUAL_INVALIDATE_PATTERN = "manual_invalidate_pattern"
    MANUAL_INVALIDATE_ALL = "manual_invalidate_all"


# Data types derived from each kind of change (the composed
# "all" entry embeds every slice, so it is always included)
INVOICE_DATA_TYPES = ("all", "summary", "shop_performance", "sales")
INVENTORY_DATA_TYPES = (
    "all", "summary", "total_retail_value",
    "shop_performance", "inventory_distribution",
)
TRANSFER_DATA_TYPES = ("all", "summary", "transfers", "shop_performance")
PRODUCT_DATA_TYPES = ("all", "total_retail_value", "inventory_distribution")
SHOP_DATA_TYPES = ("all", "shop_performance")


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: CacheEvent
    success: bool
    keys_invalidated: int
    duration_ms: float
    errors: List[str] = field(default_factory=list)
    patterns: List[str] = field(default_factory=list)


class CacheInvalidator:
    """
    Handles cache invalidation based on events.

    Each event type has a specific invalidation scope.
    """

    def __init__(self, cache: KeyValueCache):
        self._cache = cache

    def _patterns(self, data_types: Iterable[str], scopes: Iterable[str]) -> List[str]:
        return [
            self._cache.make_key("dashboard", data_type, scope, "*")
            for scope in scopes
            for data_type in data_types
        ]

    @staticmethod
    def _scopes(*shop_ids: Optional[int]) -> List[str]:
        scopes = [GLOBAL_SCOPE]
        for shop_id in shop_ids:
            if shop_id is not None and scope_key(shop_id) not in scopes:
                scopes.append(scope_key(shop_id))
        return scopes

    async def handle_event(
        self,
        event: CacheEvent,
        shop_id: Optional[int] = None,
        other_shop_id: Optional[int] = None,
        pattern: Optional[str] = None,
    ) -> InvalidationResult:
        """
        Handle cache invalidation for an event.

        other_shop_id is the second shop of a transfer.
        pattern is only used by MANUAL_INVALIDATE_PATTERN.
        """
        start = time.perf_counter()
        errors: List[str] = []
        keys_invalidated = 0

        logger.info(f"Cache invalidation event: {event.value}, shop={shop_id}")

        patterns: List[str] = []

        if event == CacheEvent.INVOICE_RECORDED:
            patterns = self._patterns(INVOICE_DATA_TYPES, self._scopes(shop_id))

        elif event == CacheEvent.INVENTORY_CHANGED:
            patterns = self._patterns(INVENTORY_DATA_TYPES, self._scopes(shop_id))

        elif event == CacheEvent.TRANSFER_RECORDED:
            patterns = self._patterns(
                TRANSFER_DATA_TYPES, self._scopes(shop_id, other_shop_id)
            )

        elif event == CacheEvent.PRODUCT_UPDATED:
            patterns = self._patterns(PRODUCT_DATA_TYPES, ["*"])

        elif event in (CacheEvent.SHOP_ADDED, CacheEvent.SHOP_UPDATED):
            patterns = self._patterns(SHOP_DATA_TYPES, self._scopes(shop_id))

        elif event in (CacheEvent.SHOP_DELETED, CacheEvent.MANUAL_INVALIDATE_SHOP):
            if shop_id is not None:
                patterns.append(scope_pattern(self._cache, scope_key(shop_id)))
            patterns.extend(self._patterns(SHOP_DATA_TYPES, [GLOBAL_SCOPE]))

        elif event == CacheEvent.MANUAL_INVALIDATE_PATTERN:
            if not pattern:
                errors.append("pattern is required for manual pattern invalidation")
            else:
                patterns = [self._cache.namespaced(pattern)]

        elif event == CacheEvent.MANUAL_INVALIDATE_ALL:
            # Nuclear option - use sparingly
            patterns = [self._cache.make_key("*")]

        for current in patterns:
            try:
                keys_invalidated += await self._cache.invalidate_pattern(current)
            except Exception as e:
                errors.append(f"{current}: {e}")
                logger.error(f"Cache invalidation error for {current}: {e}")

        duration = (time.perf_counter() - start) * 1000

        logger.info(
            f"Invalidation complete: {keys_invalidated} keys, "
            f"duration: {duration:.2f}ms"
        )

        return InvalidationResult(
            event=event,
            success=len(errors) == 0,
            keys_invalidated=keys_invalidated,
            duration_ms=duration,
            errors=errors,
            patterns=patterns,
        )
