# OAuth2 router: authorize (consent), token, userinfo, revoke.
# Created: 2026-10-12
#
# Errors raised before the client's redirect URI has been checked are answered
# with JSON; after that they are reported to the client via redirect.

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import quote, unquote, urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from mcphub.api.oauth2.errors import (
    AccessDeniedError,
    InvalidClientError,
    InvalidTokenError,
    OAuthError,
    ServerError,
    TemporarilyUnavailableError,
)
from mcphub.api.oauth2.server import AuthorizationServer
from mcphub.api.v1.schemas.oauth2 import TokenResponse, UserInfoResponse
from mcphub.hub_auth import bearer_token
from mcphub.security.principal import Principal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}
# Principals allowed to consent. Bearer-key principals are not end users.
_END_USER_METHODS = frozenset({"session", "oauth"})


def _error_response(exc: OAuthError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _redirect(redirect_uri: str, params: dict[str, str]) -> RedirectResponse:
    sep = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(f"{redirect_uri}{sep}{urlencode(params)}", status_code=302)


class RequestPrincipalResolver:
    """Finds the end user behind an authorize request.

    Order: session or OAuth principal attached by the auth middleware, then ``x-auth-token``,
    ``Authorization: Bearer``, the ``token`` query param and the ``token`` form
    field. Each credential may be a session JWT or an OAuth access token.
    """

    def __init__(
        self,
        request: Request,
        server: AuthorizationServer,
        form_token: str | None = None,
    ):
        self.request = request
        self.server = server
        self.form_token = form_token
        self._resolved = False
        self._principal: Principal | None = None

    def _candidates(self) -> list[str]:
        headers = self.request.headers
        values = [
            headers.get("x-auth-token"),
            bearer_token(headers.get("Authorization")),
            self.request.query_params.get("token"),
            self.form_token,
        ]
        return [v for v in values if v]

    async def _from_credential(self, credential: str) -> Principal | None:
        from mcphub.config import get_jwt_secret
        from mcphub.security.session_tokens import verify_session_token

        result = verify_session_token(credential, get_jwt_secret())
        if result.ok:
            return result.principal

        token = await self.server.verify_access_token(credential)
        if token is None:
            return None
        user = await self.server.users.get_user(token.username)
        return Principal(
            username=token.username,
            is_admin=bool(user and user.is_admin),
            auth_method="oauth",
            scope=token.scope,
        )

    async def resolve_principal(self) -> Principal | None:
        if self._resolved:
            return self._principal
        principal = getattr(self.request.state, "principal", None)
        if principal is not None and principal.auth_method not in _END_USER_METHODS:
            principal = None
        if principal is None:
            for credential in self._candidates():
                principal = await self._from_credential(credential)
                if principal is not None:
                    break
        self._principal = principal
        self._resolved = True
        return principal


@router.get("/oauth/authorize")
async def authorize(request: Request):
    """Show the consent page, or send an anonymous user to the login page."""
    from mcphub.api.oauth2.consent import render_consent_page
    from mcphub.api.oauth2.server import get_oauth_server, validate_authorize_request
    from mcphub.config import Settings

    server = get_oauth_server()
    config = await server.get_config()
    if not config.enabled:
        return _error_response(TemporarilyUnavailableError("OAuth server not available"))

    try:
        auth_request = validate_authorize_request(
            request.query_params, require_state=config.require_state
        )
        client = await server.check_client_redirect(
            auth_request.client_id, auth_request.redirect_uri
        )
    except OAuthError as exc:
        return _error_response(exc)

    principal = await RequestPrincipalResolver(request, server).resolve_principal()
    if principal is None:
        target = request.url.path
        if request.url.query:
            target += f"?{request.url.query}"
        login_url = f"{Settings.load().base_path}/login?returnUrl={quote(target, safe='')}"
        return RedirectResponse(login_url, status_code=302)

    html = render_consent_page(client, auth_request, token=request.query_params.get("token"))
    return HTMLResponse(html)


@router.post("/oauth/authorize")
async def authorize_decision(request: Request):
    """Process the consent form submission."""
    from mcphub.api.oauth2.server import get_oauth_server, validate_authorize_request

    server = get_oauth_server()
    config = await server.get_config()
    if not config.enabled:
        return _error_response(TemporarilyUnavailableError("OAuth server not available"))

    form = await request.form()
    try:
        auth_request = validate_authorize_request(form, require_state=config.require_state)
        await server.check_client_redirect(auth_request.client_id, auth_request.redirect_uri)
    except OAuthError as exc:
        return _error_response(exc)

    redirect_uri = auth_request.redirect_uri
    state = auth_request.state

    if form.get("allow") != "true":
        denied = AccessDeniedError("User denied the authorization request")
        return _redirect(redirect_uri, denied.redirect_params(state))

    form_token = form.get("token")
    resolver = RequestPrincipalResolver(
        request, server, form_token=form_token if isinstance(form_token, str) else None
    )
    if await resolver.resolve_principal() is None:
        return _error_response(AccessDeniedError("User not authenticated", status_code=401))

    try:
        code = await server.issue_authorization_code(auth_request, resolver)
    except OAuthError as exc:
        return _redirect(redirect_uri, exc.redirect_params(state))
    except Exception:
        logger.exception("Authorization failed for client %s", auth_request.client_id)
        error = ServerError("Authorization failed")
        return _redirect(redirect_uri, error.redirect_params(state))

    params = {"code": code.code}
    if state:
        params["state"] = state
    return _redirect(redirect_uri, params)


def _basic_credentials(authorization: str | None) -> tuple[str, str] | None:
    """Decode ``client_secret_basic`` credentials (RFC 6749 §2.3.1)."""
    if not authorization or not authorization.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode()
    except (binascii.Error, UnicodeDecodeError):
        raise InvalidClientError("Malformed Basic credentials", status_code=401) from None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise InvalidClientError("Malformed Basic credentials", status_code=401)
    return unquote(client_id), unquote(client_secret)


@router.post("/oauth/token", response_model=TokenResponse)
async def token_exchange(
    request: Request,
    grant_type: str | None = Form(None),
    code: str | None = Form(None),
    refresh_token: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    code_verifier: str | None = Form(None),
    scope: str | None = Form(None),
):
    """Exchange an authorization code or refresh token for an access token."""
    from mcphub.api.oauth2.server import TokenRequest, get_oauth_server, token_response

    server = get_oauth_server()
    basic = None
    try:
        basic = _basic_credentials(request.headers.get("Authorization"))
        if basic is not None:
            client_id, client_secret = basic
        token = await server.exchange_token(
            TokenRequest(
                grant_type=grant_type,
                client_id=client_id,
                client_secret=client_secret,
                code=code,
                redirect_uri=redirect_uri,
                code_verifier=code_verifier,
                refresh_token=refresh_token,
                scope=scope,
                basic_auth=basic is not None,
            )
        )
    except OAuthError as exc:
        headers = dict(_NO_STORE)
        if isinstance(exc, InvalidClientError) and exc.status_code == 401:
            headers["WWW-Authenticate"] = 'Basic realm="oauth"'
        return _error_response(exc, headers=headers)
    except Exception:
        logger.exception("Token request failed")
        return _error_response(ServerError("Token request failed"), headers=_NO_STORE)

    return JSONResponse(content=token_response(token), headers=_NO_STORE)


@router.get("/oauth/userinfo", response_model=UserInfoResponse)
async def userinfo(request: Request):
    """Identify the user behind an OAuth access token."""
    from mcphub.api.oauth2.server import get_oauth_server

    access_token = bearer_token(request.headers.get("Authorization"))
    token = await get_oauth_server().verify_access_token(access_token) if access_token else None
    if token is None:
        return _error_response(
            InvalidTokenError("Invalid or expired access token"),
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )
    return UserInfoResponse(sub=token.username, username=token.username)


@router.post("/oauth/revoke")
async def revoke_token(token: str | None = Form(None)):
    """Revoke an access or refresh token (RFC 7009). Unknown tokens are not an error."""
    from mcphub.api.oauth2.server import get_oauth_server

    if token:
        await get_oauth_server().revoke(token)
    return Response(status_code=200, headers=_NO_STORE)
