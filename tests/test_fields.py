import datetime

import pytest

from pqkit.fields import MAX_LENGTH, FieldDesc
from pqkit.oid import Oid


@pytest.mark.parametrize(
    "oid, name",
    [
        (Oid.INT8, "INT8"),
        (Oid.INT4, "INT4"),
        (Oid.INT2, "INT2"),
        (Oid.VARCHAR, "VARCHAR"),
        (Oid.TEXT, "TEXT"),
        (Oid.BIT, "BIT"),
        (Oid.VARBIT, "VARBIT"),
        (Oid.BOOL, "BOOL"),
        (Oid.NUMERIC, "NUMERIC"),
        (Oid.DATE, "DATE"),
        (Oid.TIME, "TIME"),
        (Oid.TIMETZ, "TIMETZ"),
        (Oid.TIMESTAMP, "TIMESTAMP"),
        (Oid.TIMESTAMPTZ, "TIMESTAMPTZ"),
        (Oid.BYTEA, "BYTEA"),
    ],
)
def test_type_name(oid, name):
    assert FieldDesc(oid).type_name() == name


def test_type_name_unknown_oid():
    assert FieldDesc(99999).type_name() == ""


@pytest.mark.parametrize(
    "oid, expected",
    [
        (Oid.INT8, int),
        (Oid.INT4, int),
        (Oid.INT2, int),
        (Oid.VARCHAR, str),
        (Oid.TEXT, str),
        (Oid.BIT, str),
        (Oid.VARBIT, str),
        (Oid.BOOL, bool),
        (Oid.FLOAT8, float),
        (Oid.FLOAT4, float),
        (Oid.DATE, datetime.datetime),
        (Oid.TIME, datetime.datetime),
        (Oid.TIMETZ, datetime.datetime),
        (Oid.TIMESTAMP, datetime.datetime),
        (Oid.TIMESTAMPTZ, datetime.datetime),
        (Oid.BYTEA, bytes),
        (Oid.NUMERIC, object),
    ],
)
def test_scan_type(oid, expected):
    assert FieldDesc(oid).scan_type() is expected


@pytest.mark.parametrize(
    "oid, size, mod, expected",
    [
        (Oid.INT4, 0, -1, None),
        (Oid.VARCHAR, 65535, 9, 5),
        (Oid.TEXT, 65535, -1, MAX_LENGTH),
        (Oid.BYTEA, 65535, -1, MAX_LENGTH),
        (Oid.BIT, 0, 10, 10),
        (Oid.VARBIT, 0, 10, 10),
    ],
)
def test_length(oid, size, mod, expected):
    assert FieldDesc(oid, size, mod).length() == expected


def test_max_length_is_int64_max():
    assert FieldDesc(Oid.TEXT).length() == 9223372036854775807


@pytest.mark.parametrize(
    "oid, mod, expected",
    [
        (Oid.INT4, -1, None),
        (Oid.NUMERIC, 589830, (9, 2)),
        (Oid.TEXT, -1, None),
    ],
)
def test_precision_scale(oid, mod, expected):
    assert FieldDesc(oid, modifier=mod).precision_scale() == expected


def test_numeric_array_has_precision_scale():
    assert FieldDesc(Oid.NUMERIC_ARRAY, modifier=589830).precision_scale() == (9, 2)