"""MCP tool surface for the browser control bridge: tool schemas, handlers and the registry."""
