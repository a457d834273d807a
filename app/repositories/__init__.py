"""
Repository package for data access layers.

Each repository has a protocol plus two implementations:

- `Memory*Repository`  in-process dicts (development and tests)
- `Sql*Repository`     SQLAlchemy async sessions (PostgreSQL via asyncpg)

`ClientRegistry` picks one pair from `REGISTRY_BACKEND` (memory | sql).
"""
