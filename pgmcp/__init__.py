"""pg-mcp core: named PostgreSQL registry and connection multiplexer."""

__version__ = "0.1.0"
