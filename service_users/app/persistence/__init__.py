"""
Persistence package for the User Service.

PostgreSQL is the authoritative store for user records.
"""
