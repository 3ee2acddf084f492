"""API v1 routers."""

from . import auth, onboarding

__all__ = [
    "auth",
    "onboarding",
]
