"""
StockPulse Dashboard Service

Cache-aside aggregation layer for the retail/inventory dashboard:
1. Aggregates shop, inventory, invoice and transfer data per dashboard slice
2. Composes slices in parallel into a single dashboard payload
3. Caches results in Redis (or in-process memory for development)
4. Warms caches in the background so dashboard loads hit a hot cache
"""

__version__ = "0.1.0"
