"""HTTP and WebSocket routers, grouped by caller."""
