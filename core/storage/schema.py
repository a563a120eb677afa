"""
Model descriptors derived from SQLAlchemy tables.

A ModelDescriptor is the read-only schema view the engine works with:
table name, primary key, key generation mode, per-column zero values and
case-insensitive field lookup. Descriptors are built once per table and
shared across calls.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Any, Optional
from uuid import UUID

import sqlalchemy as sa


ROW_VERSION = "row_version"

_ZERO_VALUES: dict[type, Any] = {
    bool: False,
    int: 0,
    float: 0.0,
    Decimal: Decimal(0),
}


def is_default_value(value: Any) -> bool:
    """True for None and for the zero value of scalar types."""
    if value is None:
        return True
    if isinstance(value, (bool, int, float, Decimal)):
        return value == 0
    if isinstance(value, UUID):
        return value.int == 0
    return False


def _python_type(column: sa.Column) -> Optional[type]:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


@dataclass(frozen=True)
class FieldDescriptor:
    """Schema information for one column."""
    name: str
    python_type: Optional[type]
    nullable: bool
    is_primary_key: bool = False
    auto_increment: bool = False
    auto_id: bool = False

    @property
    def default_value(self) -> Any:
        """The column's zero value, used by reset and by missing-key checks."""
        if self.nullable and not self.is_primary_key:
            return None
        return _ZERO_VALUES.get(self.python_type)


@dataclass(frozen=True)
class ModelDescriptor:
    """Read-only schema metadata for a persisted table."""
    table: sa.Table
    fields: tuple[FieldDescriptor, ...]
    primary_key: Optional[FieldDescriptor]
    _by_name: dict[str, FieldDescriptor] = field(default_factory=dict, repr=False, compare=False)

    @property
    def name(self) -> str:
        return self.table.name

    @property
    def row_version(self) -> Optional[FieldDescriptor]:
        """The concurrency token column, if the table declares one."""
        return self.get_field(ROW_VERSION)

    def get_field(self, name: str) -> Optional[FieldDescriptor]:
        """Look up a field by exact name, then case-insensitively."""
        found = self._by_name.get(name)
        if found is None:
            found = self._by_name.get(name.lower())
        return found

    def has_field(self, name: str) -> bool:
        return self.get_field(name) is not None

    @classmethod
    def from_table(cls, table: sa.Table) -> "ModelDescriptor":
        return _describe(table)


@lru_cache(maxsize=None)
def _describe(table: sa.Table) -> ModelDescriptor:
    pk_columns = list(table.primary_key.columns)
    pk_name = pk_columns[0].key if pk_columns else None

    fields = []
    for column in table.columns:
        is_pk = column.key == pk_name
        python_type = _python_type(column)
        has_python_default = column.default is not None and (
            getattr(column.default, "is_callable", False)
            or getattr(column.default, "is_scalar", False)
        )
        fields.append(FieldDescriptor(
            name=column.key,
            python_type=python_type,
            nullable=bool(column.nullable),
            is_primary_key=is_pk,
            auto_increment=is_pk and python_type is int and column.autoincrement in (True, "auto"),
            auto_id=is_pk and python_type is not int and has_python_default,
        ))

    by_name: dict[str, FieldDescriptor] = {}
    for f in fields:
        by_name[f.name] = f
        by_name.setdefault(f.name.lower(), f)

    primary_key = next((f for f in fields if f.is_primary_key), None)
    return ModelDescriptor(
        table=table,
        fields=tuple(fields),
        primary_key=primary_key,
        _by_name=by_name,
    )
