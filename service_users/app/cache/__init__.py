"""
Cache package for the User Service.

Provides a Redis-backed cache holding serialized user snapshots with a
fixed TTL. The cache is best-effort: every failure is logged and reported
to callers as a miss.
"""
