# Consent page rendering for the authorization endpoint.
# Created: 2026-10-12

from __future__ import annotations

from html import escape

from mcphub.api.oauth2.models import OAuthClient
from mcphub.api.oauth2.server import AuthorizeRequest

DEFAULT_CONSENT_SCOPE = "read write"

SCOPE_DESCRIPTIONS = {
    "read": "Read access to your MCP servers and tools",
    "write": "Execute tools and modify MCP server configurations",
    "admin": "Administrative access to all resources",
}
_GENERIC_DESCRIPTION = "Access to MCPHub resources"

_CONSENT_HTML = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>MCPHub Authorization</title>
<style>
body {{ font-family: system-ui; max-width: 480px; margin: 40px auto; padding: 20px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer; font-size: 16px; }}
.allow {{ background: #2563eb; color: white; }} .allow:hover {{ background: #1d4ed8; }}
.deny {{ background: #e5e7eb; color: #374151; }}
h2 {{ margin-bottom: 8px; }}
.scopes {{ background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0; }}
.scopes li {{ margin: 4px 0; }}
.actions {{ display: flex; gap: 12px; }}
</style></head><body>
<h2>Authorize {client_name}</h2>
<p><strong>{client_name}</strong> wants to access your MCPHub account.</p>
<div class="scopes"><strong>This application will be able to:</strong>
<ul>{scope_items}</ul></div>
<div class="actions">
<form method="POST" action="{action}">
{hidden_fields}
<input type="hidden" name="allow" value="true">
<button type="submit" class="btn allow">Allow</button>
</form>
<form method="POST" action="{action}">
{hidden_fields}
<input type="hidden" name="allow" value="false">
<button type="submit" class="btn deny">Deny</button>
</form>
</div></body></html>"""


def describe_scopes(scope: str | None) -> list[tuple[str, str]]:
    """Map a space-separated scope string to (scope, human description) pairs."""
    names = (scope or DEFAULT_CONSENT_SCOPE).split()
    return [(name, SCOPE_DESCRIPTIONS.get(name, _GENERIC_DESCRIPTION)) for name in names]


def render_consent_page(
    client: OAuthClient,
    request: AuthorizeRequest,
    *,
    token: str | None = None,
    action: str = "/oauth/authorize",
) -> str:
    """Render the consent form. Every interpolated value is HTML-escaped."""
    fields = request.as_params()
    if token:
        fields["token"] = token
    hidden_fields = "\n".join(
        f'<input type="hidden" name="{escape(k)}" value="{escape(v)}">' for k, v in fields.items()
    )
    scope_items = "".join(
        f"<li>{escape(description)}</li>" for _, description in describe_scopes(request.scope)
    )
    return _CONSENT_HTML.format(
        client_name=escape(client.name or client.client_id),
        scope_items=scope_items,
        hidden_fields=hidden_fields,
        action=escape(action),
    )
