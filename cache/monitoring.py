"""
Monitoring for the explorer cache tiers.

Prometheus metrics for the block window and for the outcome of every tier
consulted by the fallback read path.
"""
from prometheus_client import Counter, Gauge, Histogram

TIER_RESULTS = Counter('explorer_tier_results_total', 'Outcome of tier lookups',
                       ['tier', 'operation', 'outcome'])
TIER_LATENCY = Histogram('explorer_tier_latency_seconds', 'Tier lookup latency in seconds',
                         ['tier', 'operation'])
WINDOW_SIZE = Gauge('explorer_block_window_size', 'Number of blocks held in the window')
WINDOW_EVICTIONS = Counter('explorer_block_window_evictions_total',
                           'Blocks evicted from the window')

# Tier names
CACHE_TIER = 'cache'
DATABASE_TIER = 'database'
RPC_TIER = 'rpc'

OUTCOME_OK = 'ok'
OUTCOME_MISS = 'miss'
OUTCOME_ERROR = 'error'


class CacheMonitor:
    """
    Monitor for the explorer cache tiers.

    Records tier outcomes and latencies, window size and evictions. The
    values are process-wide prometheus collectors served on /metrics.
    """

    def record_tier_result(self, tier: str, operation: str, outcome: str) -> None:
        """
        Record the outcome of one tier lookup.

        Args:
            tier: Tier name (cache, database, rpc)
            operation: Read operation name (block_by_hash, latest_blocks, ...)
            outcome: ok, miss or error
        """
        TIER_RESULTS.labels(tier=tier, operation=operation, outcome=outcome).inc()

    def record_latency(self, tier: str, operation: str, latency: float) -> None:
        TIER_LATENCY.labels(tier=tier, operation=operation).observe(latency)

    def update_window_size(self, size: int) -> None:
        WINDOW_SIZE.set(size)

    def record_eviction(self) -> None:
        WINDOW_EVICTIONS.inc()

    def get_hit_ratio(self, tier: str, operation: str) -> float:
        """
        Get the share of lookups a tier answered for an operation.

        Returns:
            Hit ratio as a float between 0 and 1
        """
        hits = TIER_RESULTS.labels(tier=tier, operation=operation, outcome=OUTCOME_OK)._value.get()
        total = hits
        for outcome in (OUTCOME_MISS, OUTCOME_ERROR):
            total += TIER_RESULTS.labels(tier=tier, operation=operation, outcome=outcome)._value.get()

        if total == 0:
            return 0.0

        return hits / total
