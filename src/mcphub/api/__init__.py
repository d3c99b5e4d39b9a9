# MCPHub HTTP API layer
# Created: 2026-10-12
#
# OAuth 2.0 endpoints are mounted at the site root (/oauth/*, /.well-known/*);
# administrative endpoints live under /api/v1/.
