"""
Rate Limiter Service package.

The service gates how often a caller identity (usually a client address)
may pass a guarded route, sharing token buckets across processes through
Redis and degrading to per-process buckets when Redis is unreachable.

Structure:
- app.main: FastAPI app, routes, and limiter wiring.
- app.ratelimit: Token-bucket core, bucket stores, fallback and middleware.
"""
