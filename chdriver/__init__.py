"""ClickHouse native protocol client: pooling, parameter binding, batches and a DB-API layer; wire encoding is supplied by a codec."""

__version__ = "0.1.0"