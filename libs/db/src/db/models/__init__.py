"""Shared SQLAlchemy models registry for the workspace database.

Currently holds the statement-ingestion models used by ``statement_parsing``.
"""

from .statements import AppConfig, Base, Transaction

__all__ = [
    "AppConfig",
    "Base",
    "Transaction",
]
