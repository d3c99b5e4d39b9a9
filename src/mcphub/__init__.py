"""MCPHub auth core: OAuth 2.0 authorization server and request authentication."""

__version__ = "0.1.0"
