"""PostgreSQL object identifiers for the built-in data types."""

from __future__ import annotations

from enum import IntEnum

_ARRAY_SUFFIX = "_ARRAY"


class Oid(IntEnum):
    """Object ID of a built-in PostgreSQL type.

    Array types carry an ``_ARRAY`` suffix; the server calls them by the
    element type's name with a leading underscore.
    """

    BOOL = 16
    BYTEA = 17
    CHAR = 18
    NAME = 19
    INT8 = 20
    INT2 = 21
    INT2VECTOR = 22
    INT4 = 23
    REGPROC = 24
    TEXT = 25
    OID = 26
    TID = 27
    XID = 28
    CID = 29
    OIDVECTOR = 30
    PG_DDL_COMMAND = 32
    PG_TYPE = 71
    PG_ATTRIBUTE = 75
    PG_PROC = 81
    PG_CLASS = 83
    JSON = 114
    XML = 142
    XML_ARRAY = 143
    PG_NODE_TREE = 194
    JSON_ARRAY = 199
    SMGR = 210
    INDEX_AM_HANDLER = 325
    POINT = 600
    LSEG = 601
    PATH = 602
    BOX = 603
    POLYGON = 604
    LINE = 628
    LINE_ARRAY = 629
    CIDR = 650
    CIDR_ARRAY = 651
    FLOAT4 = 700
    FLOAT8 = 701
    ABSTIME = 702
    RELTIME = 703
    TINTERVAL = 704
    UNKNOWN = 705
    CIRCLE = 718
    CIRCLE_ARRAY = 719
    MONEY = 790
    MONEY_ARRAY = 791
    MACADDR = 829
    INET = 869
    BOOL_ARRAY = 1000
    BYTEA_ARRAY = 1001
    CHAR_ARRAY = 1002
    NAME_ARRAY = 1003
    INT2_ARRAY = 1005
    INT2VECTOR_ARRAY = 1006
    INT4_ARRAY = 1007
    REGPROC_ARRAY = 1008
    TEXT_ARRAY = 1009
    TID_ARRAY = 1010
    XID_ARRAY = 1011
    CID_ARRAY = 1012
    OIDVECTOR_ARRAY = 1013
    BPCHAR_ARRAY = 1014
    VARCHAR_ARRAY = 1015
    INT8_ARRAY = 1016
    POINT_ARRAY = 1017
    LSEG_ARRAY = 1018
    PATH_ARRAY = 1019
    BOX_ARRAY = 1020
    FLOAT4_ARRAY = 1021
    FLOAT8_ARRAY = 1022
    ABSTIME_ARRAY = 1023
    RELTIME_ARRAY = 1024
    TINTERVAL_ARRAY = 1025
    POLYGON_ARRAY = 1027
    OID_ARRAY = 1028
    ACLITEM = 1033
    ACLITEM_ARRAY = 1034
    MACADDR_ARRAY = 1040
    INET_ARRAY = 1041
    BPCHAR = 1042
    VARCHAR = 1043
    DATE = 1082
    TIME = 1083
    TIMESTAMP = 1114
    TIMESTAMP_ARRAY = 1115
    DATE_ARRAY = 1182
    TIME_ARRAY = 1183
    TIMESTAMPTZ = 1184
    TIMESTAMPTZ_ARRAY = 1185
    INTERVAL = 1186
    INTERVAL_ARRAY = 1187
    NUMERIC_ARRAY = 1231
    PG_DATABASE = 1248
    CSTRING_ARRAY = 1263
    TIMETZ = 1266
    TIMETZ_ARRAY = 1270
    BIT = 1560
    BIT_ARRAY = 1561
    VARBIT = 1562
    VARBIT_ARRAY = 1563
    NUMERIC = 1700
    REFCURSOR = 1790
    REFCURSOR_ARRAY = 2201
    REGPROCEDURE = 2202
    REGOPER = 2203
    REGOPERATOR = 2204
    REGCLASS = 2205
    REGTYPE = 2206
    REGPROCEDURE_ARRAY = 2207
    REGOPER_ARRAY = 2208
    REGOPERATOR_ARRAY = 2209
    REGCLASS_ARRAY = 2210
    REGTYPE_ARRAY = 2211
    RECORD = 2249
    CSTRING = 2275
    ANY = 2276
    ANYARRAY = 2277
    VOID = 2278
    TRIGGER = 2279
    LANGUAGE_HANDLER = 2280
    INTERNAL = 2281
    OPAQUE = 2282
    ANYELEMENT = 2283
    RECORD_ARRAY = 2287
    ANYNONARRAY = 2776
    PG_AUTHID = 2842
    PG_AUTH_MEMBERS = 2843
    TXID_SNAPSHOT_ARRAY = 2949
    UUID = 2950
    UUID_ARRAY = 2951
    TXID_SNAPSHOT = 2970
    FDW_HANDLER = 3115
    PG_LSN = 3220
    PG_LSN_ARRAY = 3221
    TSM_HANDLER = 3310
    ANYENUM = 3500
    TSVECTOR = 3614
    TSQUERY = 3615
    GTSVECTOR = 3642
    TSVECTOR_ARRAY = 3643
    GTSVECTOR_ARRAY = 3644
    TSQUERY_ARRAY = 3645
    REGCONFIG = 3734
    REGCONFIG_ARRAY = 3735
    REGDICTIONARY = 3769
    REGDICTIONARY_ARRAY = 3770
    JSONB = 3802
    JSONB_ARRAY = 3807
    ANYRANGE = 3831
    EVENT_TRIGGER = 3838
    INT4RANGE = 3904
    INT4RANGE_ARRAY = 3905
    NUMRANGE = 3906
    NUMRANGE_ARRAY = 3907
    TSRANGE = 3908
    TSRANGE_ARRAY = 3909
    TSTZRANGE = 3910
    TSTZRANGE_ARRAY = 3911
    DATERANGE = 3912
    DATERANGE_ARRAY = 3913
    INT8RANGE = 3926
    INT8RANGE_ARRAY = 3927
    PG_SHSECLABEL = 4066
    REGNAMESPACE = 4089
    REGNAMESPACE_ARRAY = 4090
    REGROLE = 4096
    REGROLE_ARRAY = 4097


def type_name(oid: int) -> str:
    """Return the upper-case database type name for *oid*, or "" if unknown."""
    try:
        member = Oid(oid)
    except ValueError:
        return ""
    name = member.name
    if name.endswith(_ARRAY_SUFFIX):
        return "_" + name[: -len(_ARRAY_SUFFIX)]
    return name