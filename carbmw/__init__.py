"""Client for the BMW ConnectedDrive API with a self-managing login session."""

from __future__ import annotations

from .auth import AuthNegotiator, AuthStageError, MissingCaptchaError, OAuthConfig, TokenData
from .client import BmwClient
from .config import Credential, SessionOptions
from .decode import DecodeError, decode_body
from .services import InvalidArgumentError, UnsupportedServiceError, is_valid_vin
from .session import Session, SessionState
from .store import JsonFileTokenStore, MemoryTokenStore, TokenStore
from .transport import AiohttpTransport, HttpResponse, HttpStatusError, Transport, TransportError

__all__ = [
    "AiohttpTransport",
    "AuthNegotiator",
    "AuthStageError",
    "BmwClient",
    "Credential",
    "DecodeError",
    "HttpResponse",
    "HttpStatusError",
    "InvalidArgumentError",
    "JsonFileTokenStore",
    "MemoryTokenStore",
    "MissingCaptchaError",
    "OAuthConfig",
    "Session",
    "SessionOptions",
    "SessionState",
    "TokenData",
    "TokenStore",
    "Transport",
    "TransportError",
    "UnsupportedServiceError",
    "decode_body",
    "is_valid_vin",
]
