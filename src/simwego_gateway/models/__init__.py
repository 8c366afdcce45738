"""Database models and API schemas"""

from .database import Client, TokenCache
from .schemas import TokenSet

__all__ = [
    "Client",
    "TokenCache",
    "TokenSet",
]
