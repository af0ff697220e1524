# api/__init__.py
from api.server import (
    Storefront,
    configure_logging,
    create_app,
)

__all__ = [
    "Storefront",
    "configure_logging",
    "create_app",
]
