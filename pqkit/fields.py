"""Column descriptions as sent by the server in a RowDescription message."""

from __future__ import annotations

import datetime
from dataclasses import dataclass

from pqkit.oid import Oid, type_name

# Size of the varlena header that the server counts into type modifiers.
HEADER_SIZE = 4

# Reported length of unbounded variable-length types.
MAX_LENGTH = 2**63 - 1

_SCAN_TYPES: dict[int, type] = {
    Oid.INT8: int,
    Oid.INT4: int,
    Oid.INT2: int,
    Oid.FLOAT8: float,
    Oid.FLOAT4: float,
    Oid.VARCHAR: str,
    Oid.TEXT: str,
    Oid.VARBIT: str,
    Oid.BIT: str,
    Oid.BOOL: bool,
    Oid.DATE: datetime.datetime,
    Oid.TIME: datetime.datetime,
    Oid.TIMETZ: datetime.datetime,
    Oid.TIMESTAMP: datetime.datetime,
    Oid.TIMESTAMPTZ: datetime.datetime,
    Oid.BYTEA: bytes,
}


@dataclass(frozen=True)
class FieldDesc:
    """Description of one result column.

    ``size`` is the type's ``typlen`` (negative for variable-width types) and
    ``modifier`` its type-specific ``atttypmod``.
    """

    oid: int
    size: int = 0
    modifier: int = 0

    def scan_type(self) -> type:
        """Return the Python type values of this column are decoded into."""
        return _SCAN_TYPES.get(self.oid, object)

    def type_name(self) -> str:
        """Return the database type name, or "" for an unknown type."""
        return type_name(self.oid)

    def length(self) -> int | None:
        """Return the length of a variable-length type, or None otherwise."""
        if self.oid in (Oid.TEXT, Oid.BYTEA):
            return MAX_LENGTH
        if self.oid in (Oid.VARCHAR, Oid.BPCHAR):
            return self.modifier - HEADER_SIZE
        if self.oid in (Oid.VARBIT, Oid.BIT):
            return self.modifier
        return None

    def precision_scale(self) -> tuple[int, int] | None:
        """Return ``(precision, scale)`` of a numeric type, or None otherwise."""
        if self.oid in (Oid.NUMERIC, Oid.NUMERIC_ARRAY):
            mod = self.modifier - HEADER_SIZE
            return (mod >> 16) & 0xFFFF, mod & 0xFFFF
        return None