from .handshake import AuthResult, Connection, authenticate
from .signer import (
    RequestSigner,
    SessionKey,
    canonical_address,
    generate_session_key,
    validate_signature_shape,
)

__all__ = [
    "AuthResult",
    "Connection",
    "authenticate",
    "RequestSigner",
    "SessionKey",
    "canonical_address",
    "generate_session_key",
    "validate_signature_shape",
]
