from __future__ import annotations

from .receipts import AggregationReceiptStore
from .vk_cache import InMemoryVkCache, VkCache, VkIdStore

__all__ = ["AggregationReceiptStore", "VkCache", "InMemoryVkCache", "VkIdStore"]
