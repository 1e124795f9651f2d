"""
Tolerant field parsing for bronze -> silver.

Every helper returns a DuckDB SQL expression over a raw VARCHAR column. The
expressions use TRY_CAST so a malformed value becomes NULL for that field
only and never fails the batch.
"""

# Suffix some exports append to timestamps ("2025-02-01T10:05:00 UTC")
TIMESTAMP_SUFFIX = " UTC"

ONLINE = "Online"
OFFLINE = "Offline"


def sql_literal(value: str) -> str:
    """Quote a Python string as a SQL string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def clean_string(col: str) -> str:
    """Trim surrounding whitespace; empty after trim -> NULL."""
    return f"NULLIF(TRIM({col}), '')"


def lower_string(col: str) -> str:
    return f"LOWER({clean_string(col)})"


def parse_timestamp(col: str, suffix: str = TIMESTAMP_SUFFIX) -> str:
    """
    Strip the known suffix token, then parse. No timezone conversion is
    applied: the wall-clock value is kept as a naive TIMESTAMP.
    """
    stripped = f"TRIM(REPLACE({col}, {sql_literal(suffix)}, ''))"
    return f"TRY_CAST(NULLIF({stripped}, '') AS TIMESTAMP)"


def parse_decimal(col: str, precision: int = 18, scale: int = 2) -> str:
    return f"TRY_CAST({clean_string(col)} AS DECIMAL({precision}, {scale}))"


INTEGER_PATTERN = "[+-]?[0-9]+"


def parse_integer(col: str) -> str:
    """
    Whole numbers only. DuckDB would round '3.5' or expand '1e3' on a plain
    cast, so anything that is not digits with an optional sign is NULL.
    """
    cleaned = clean_string(col)
    return f"""CASE WHEN regexp_full_match({cleaned}, {sql_literal(INTEGER_PATTERN)})
                THEN TRY_CAST({cleaned} AS INTEGER)
            END"""


def classify_channel(channel_col: str, store_col: str) -> str:
    """
    Sales channel, first match wins:
      raw channel mentions 'store' -> Offline
      raw channel mentions 'ecom'  -> Online
      no store id                  -> Online
      otherwise                    -> Offline
    """
    raw = f"LOWER(COALESCE({channel_col}, ''))"
    return f"""CASE
                WHEN {raw} LIKE '%store%' THEN {sql_literal(OFFLINE)}
                WHEN {raw} LIKE '%ecom%'  THEN {sql_literal(ONLINE)}
                WHEN {clean_string(store_col)} IS NULL THEN {sql_literal(ONLINE)}
                ELSE {sql_literal(OFFLINE)}
            END"""
