"""weebase — Database console core.

A dialect-abstracted statement engine and safety-gated mutation executor for
PostgreSQL, MySQL/MariaDB, SQLite and SQL Server.

Layers (bottom to top):
    1. Dialects    — canonical dialect names, aliases, SQLAlchemy driver profiles
    2. Identifiers — validation and per-dialect quoting of schema/table/column names
    3. Statements  — parameterized SQL for browse, mutation, DDL, EXPLAIN, introspection
    4. Safety      — read-only / safe-mode gates, count-checked single-row mutations
    5. Connections — SQLAlchemy-backed handles, sessions, saved profiles
    6. Console     — the operations a web handler or the CLI calls
"""

__version__ = "0.1.0"

from weebase.console import Console
from weebase.dialects import Dialect, normalize
from weebase.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    ExecutionError,
    NotConnectedError,
    SafetyViolation,
    ValidationError,
    WeebaseError,
)
from weebase.params import ColumnSpec, ConnectRequest, DeleteRequest, InsertRequest, UpdateRequest
from weebase.safety import SafetyPolicy

__all__ = [
    "__version__",
    "Console",
    "Dialect",
    "normalize",
    "ColumnSpec",
    "ConnectRequest",
    "InsertRequest",
    "UpdateRequest",
    "DeleteRequest",
    "SafetyPolicy",
    "WeebaseError",
    "ValidationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "NotConnectedError",
    "SafetyViolation",
    "ExecutionError",
]
