"""Infrastructure layer package.

Implements Port interfaces with concrete adapters (PostgreSQL, Redis,
HTTP tool service, in-memory images).
"""
