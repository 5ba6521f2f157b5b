"""API v1 routers"""
from . import (
    admin,
    auth,
    guests,
    passes,
    scanner,
    webhooks,
)

__all__ = [
    "admin",
    "auth",
    "guests",
    "passes",
    "scanner",
    "webhooks",
]
