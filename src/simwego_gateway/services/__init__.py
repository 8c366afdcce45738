"""Gateway services package"""

from .cleanup_scheduler import TokenCleanupScheduler
from .client_registry import ClientRegistry
from .credential_vault import CredentialVault
from .session_broker import SessionBroker
from .token_cache import TokenCacheStore
from .upstream_client import UpstreamClient

__all__ = [
    "TokenCleanupScheduler",
    "ClientRegistry",
    "CredentialVault",
    "SessionBroker",
    "TokenCacheStore",
    "UpstreamClient",
]
