"""PostgreSQL client building blocks: quoting, type OIDs, column metadata, SCRAM, TLS and LISTEN/NOTIFY."""

__version__ = "0.1.0"