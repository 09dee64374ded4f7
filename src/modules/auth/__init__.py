"""Auth module: bearer token verification and the explicit request Actor."""

from src.modules.auth.actor import Actor
from src.modules.auth.dependencies import get_current_actor

__all__ = [
    "Actor",
    "get_current_actor",
]
