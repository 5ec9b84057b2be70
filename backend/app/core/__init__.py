"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging
    errors          — exception hierarchy & handlers
    middleware      — request timing & correlation IDs
    health          — health check aggregation
    database        — async SQLAlchemy engine & session factory
"""
