"""OAuth 2.0 client for remote MCP servers.

See :mod:`mcp_remote_auth.remote_oauth` for the core flow and
:mod:`mcp_remote_auth.servers` for the HTTP surface.
"""

__version__ = "0.1.0"
