"""Typed request models for the console operations.

Identifiers are validated when a model is built, so a request object that
exists is one whose schema/table/column names are safe to quote.  Failures
raise :class:`weebase.exceptions.ValidationError`, which pydantic lets
propagate unchanged.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from weebase.exceptions import ValidationError
from weebase.identifiers import ensure_identifier

# "integer", "double precision", "varchar(255)", "numeric(10, 2)"
_TYPE_NAME = re.compile(r"[A-Za-z][A-Za-z0-9_ ]*(\(\s*\d+\s*(,\s*\d+\s*)?\))?")
_LENGTH = re.compile(r"\d+(\s*,\s*\d+)?")


def _optional_schema(v: str | None) -> str | None:
    v = (v or "").strip()
    return ensure_identifier(v, kind="schema") if v else None


# ---------------------------------------------------------------------------
# CREATE TABLE
# ---------------------------------------------------------------------------


class ColumnSpec(BaseModel):
    """One column of a CREATE TABLE request.

    A blank ``name`` is allowed here; the statement builder skips such rows.
    """

    name: str = ""
    base_type: str = "text"
    length: str | None = Field(
        default=None,
        description="Appended as type(length) unless the type already has one.",
    )
    nullable: bool = True
    primary_key: bool = False
    auto_increment: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("base_type", mode="before")
    @classmethod
    def _default_type(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return "text"
        if isinstance(v, str):
            v = " ".join(v.split())
            if not _TYPE_NAME.fullmatch(v):
                raise ValidationError(f"invalid column type: {v!r}", context={"type": v})
        return v

    @field_validator("length", mode="before")
    @classmethod
    def _check_length(cls, v: Any) -> Any:
        if v is None:
            return None
        text = str(v).strip()
        if not text:
            return None
        if not _LENGTH.fullmatch(text):
            raise ValidationError(f"invalid column length: {v!r}", context={"length": v})
        return text

    def rendered_type(self) -> str:
        if self.length and "(" not in self.base_type:
            return f"{self.base_type}({self.length})"
        return self.base_type


# ---------------------------------------------------------------------------
# Row mutations
# ---------------------------------------------------------------------------


class _TableRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_name: str | None = Field(default=None, alias="schema")
    table: str

    @field_validator("schema_name", mode="before")
    @classmethod
    def _check_schema(cls, v: Any) -> Any:
        return _optional_schema(v) if v is None or isinstance(v, str) else v

    @field_validator("table", mode="before")
    @classmethod
    def _check_table(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValidationError("table is required")
            return ensure_identifier(v, kind="table")
        return v


class _KeyedRequest(_TableRequest):
    key_column: str
    key_value: Any

    @field_validator("key_column", mode="before")
    @classmethod
    def _check_key_column(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValidationError("key_column is required")
            return ensure_identifier(v, kind="column")
        return v

    @field_validator("key_value")
    @classmethod
    def _check_key_value(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValidationError("key_value is required")
        return v


def _check_parallel(columns: list[str], values: list[Any], what: str) -> None:
    if not columns:
        raise ValidationError(f"at least one {what} column required")
    if len(columns) != len(values):
        raise ValidationError(
            f"{what} columns and values length mismatch",
            context={"columns": len(columns), "values": len(values)},
        )
    for col in columns:
        ensure_identifier(col, kind="column")


class InsertRequest(_TableRequest):
    columns: list[str]
    values: list[Any]

    @model_validator(mode="after")
    def _check_arrays(self) -> InsertRequest:
        _check_parallel(self.columns, self.values, "insert")
        return self


class UpdateRequest(_KeyedRequest):
    set_columns: list[str]
    set_values: list[Any]

    @model_validator(mode="after")
    def _check_arrays(self) -> UpdateRequest:
        _check_parallel(self.set_columns, self.set_values, "update")
        return self


class DeleteRequest(_KeyedRequest):
    pass


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------


class ConnectRequest(BaseModel):
    """Where to connect: a saved profile, discrete fields, or a raw DSN."""

    profile_id: str = ""
    driver: str = ""
    dsn: str = ""
    host: str = ""
    port: int | str | None = None
    user: str = ""
    password: str = ""
    database: str = ""

    @field_validator("profile_id", "driver", "dsn", "host", "user", "database", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    def has_fields(self) -> bool:
        return any((self.host, self.port, self.user, self.password, self.database))
