# OAuth 2.0 error taxonomy (RFC 6749 §5.2, RFC 6750 §3.1, RFC 7591 §3.2.2).
# Created: 2026-10-12

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_SCOPE = "invalid_scope"
    ACCESS_DENIED = "access_denied"
    SERVER_ERROR = "server_error"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    INVALID_TOKEN = "invalid_token"
    INVALID_REDIRECT_URI = "invalid_redirect_uri"
    INVALID_CLIENT_METADATA = "invalid_client_metadata"


class OAuthError(Exception):
    """Base class: carries the wire error code and the HTTP status to use."""

    error: ErrorCode = ErrorCode.SERVER_ERROR
    status_code: int = 400

    def __init__(self, description: str = "", *, status_code: int | None = None):
        self.description = description
        if status_code is not None:
            self.status_code = status_code
        super().__init__(f"{self.error.value}: {description}")

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error.value}
        if self.description:
            body["error_description"] = self.description
        return body

    def redirect_params(self, state: str | None = None) -> dict[str, str]:
        params = self.to_dict()
        if state:
            params["state"] = state
        return params


class InvalidRequestError(OAuthError):
    error = ErrorCode.INVALID_REQUEST


class InvalidClientError(OAuthError):
    error = ErrorCode.INVALID_CLIENT


class InvalidGrantError(OAuthError):
    error = ErrorCode.INVALID_GRANT


class UnauthorizedClientError(OAuthError):
    error = ErrorCode.UNAUTHORIZED_CLIENT


class UnsupportedGrantTypeError(OAuthError):
    error = ErrorCode.UNSUPPORTED_GRANT_TYPE


class InvalidScopeError(OAuthError):
    error = ErrorCode.INVALID_SCOPE


class AccessDeniedError(OAuthError):
    error = ErrorCode.ACCESS_DENIED
    status_code = 403


class ServerError(OAuthError):
    error = ErrorCode.SERVER_ERROR
    status_code = 500


class TemporarilyUnavailableError(OAuthError):
    error = ErrorCode.TEMPORARILY_UNAVAILABLE
    status_code = 503


class InvalidTokenError(OAuthError):
    error = ErrorCode.INVALID_TOKEN
    status_code = 401


class InvalidRedirectURIError(OAuthError):
    error = ErrorCode.INVALID_REDIRECT_URI


class InvalidClientMetadataError(OAuthError):
    error = ErrorCode.INVALID_CLIENT_METADATA
