"""
Persistence layer: engine/session handling, ORM models and queries.
"""
