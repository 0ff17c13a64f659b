"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    cache           — TTL cache with stale fallback (memory or Redis)
    retry           — bounded retry with multiplicative backoff
"""
