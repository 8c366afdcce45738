"""
Error taxonomy for SimWeGo Gateway
"""
from enum import Enum
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for gateway errors"""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        """Body returned to the caller"""
        return {"error": self.message, "message": self.message, "code": self.code}


class AuthError(GatewayError):
    """Authentication strategy failure, rendered as {error, message, code}"""

    def __init__(self, status_code: int, code: str, error: str, message: str):
        super().__init__(code, message)
        self.status_code = status_code
        self.error = error

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message, "code": self.code}


class UpstreamFailure(str, Enum):
    """Classification of upstream authentication failures"""
    INVALID_CREDENTIALS = "invalid_credentials"  # 401/403 from partner
    SERVER_ERROR = "server_error"  # 5xx from partner
    NETWORK_ERROR = "network_error"  # No response
    UPSTREAM_ERROR = "upstream_error"  # Any other HTTP error
    INVALID_RESPONSE = "invalid_response"  # Missing access_token/expires_in


class UpstreamAuthError(GatewayError):
    """
    Unrecoverable failure to obtain an upstream session

    The message returned to callers is always generic; the upstream status
    and classification are kept for logging only.
    """

    def __init__(
        self,
        kind: UpstreamFailure,
        detail: str = "",
        status_code: Optional[int] = None,
    ):
        super().__init__(
            "MONTY_AUTH_FAILED",
            "Unable to authenticate with eSIM service. Please try again or contact support.",
        )
        self.kind = kind
        self.detail = detail
        self.upstream_status = status_code

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": "Backend authentication failed",
            "message": self.message,
            "code": self.code,
        }


class VaultError(GatewayError):
    """Credential vault failure, never exposes cipher internals"""

    def __init__(self, message: str):
        super().__init__("CREDENTIAL_ERROR", message)

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": "Credential processing failed",
            "message": "Unable to process stored credentials",
            "code": self.code,
        }


class EncryptionError(VaultError):
    """Plaintext could not be encrypted"""


class DecryptionError(VaultError):
    """Ciphertext could not be decrypted"""


class RegistryError(GatewayError):
    """Client registry failure"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class DuplicateClientError(RegistryError):
    """Unique constraint violation on a client record"""

    status_code = 409


class ClientNotFoundError(RegistryError):
    """Client id does not exist"""

    status_code = 404

    def __init__(self, client_id: str):
        super().__init__(f"No client found with ID: {client_id}")
        self.code = "CLIENT_NOT_FOUND"


class TokenCacheError(GatewayError):
    """Token cache write rejected"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__("VALIDATION_ERROR", message)
