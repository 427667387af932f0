"""MongoDB command handlers that store documents in PostgreSQL, as jsonb or plain tables."""

__version__ = "0.1.0"

__all__ = [
    "common",
    "errors",
    "handler",
    "info",
    "jsonb",
    "jsonb_storage",
    "jsonb_where",
    "metrics",
    "pg",
    "shared",
    "sql_storage",
    "sql_where",
]