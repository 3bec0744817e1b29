"""
User Service package.

Exposes CRUD over user records stored in PostgreSQL, fronted by a Redis
read-through cache. It provides:

- app.main: API surface for user CRUD, health and metrics.
- app.models: User entity and request/response schemas.
- app.persistence: PostgreSQL store for the users table.
- app.cache: Redis-backed snapshot cache.
- app.consistency: Read-through / write-through policy tying store and cache.

Guidelines:
- The service is stateless; rely on external cache/DB.
- The store is authoritative. Cache failures degrade to store reads and never
  fail a request.
"""
