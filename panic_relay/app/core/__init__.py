"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured logging
    errors          — exception hierarchy & handlers
    middleware      — request logging & correlation IDs
    firebase        — Firebase Admin app lifecycle
    health          — health check aggregation
"""
