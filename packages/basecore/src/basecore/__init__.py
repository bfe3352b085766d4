"""
basecore - shared infrastructure for the auction services.

- settings: environment configuration (pydantic-settings)
- logging: root logger setup
- db: SQLAlchemy engines and sessions (auction store, search store)
- redis: Redis client and Streams helpers
"""
