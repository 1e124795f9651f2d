import logging
import time
from typing import Sequence

import duckdb

from config_loader import load_config
from logging_utils import configure_logging, resolve_run_ts
from normalizers import (
    classify_channel,
    clean_string,
    lower_string,
    parse_decimal,
    parse_integer,
    parse_timestamp,
)

DB_FILE = "case_q1_2025.db"

# Effect types whose value is a monetary discount on the session
DISCOUNT_EFFECT_TYPES = ("setDiscountPerItem", "setDiscountPerAdditionalCost")

CLOSED_STATE = "closed"

# Dependents before dependencies
SILVER_TABLES = (
    "silver_sessions_with_discounts",
    "silver_effects_summary",
    "silver_customer_sessions",
)


class SilverIntegrityError(Exception):
    """Raised when a freshly loaded silver snapshot breaks its grain."""


def _count_rows(con: duckdb.DuckDBPyConnection, table: str) -> int:
    return con.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def truncate_silver(con: duckdb.DuckDBPyConnection, logger: logging.Logger) -> None:
    logger.info(">> Truncating Silver targets...")
    for table in SILVER_TABLES:
        con.execute(f"DELETE FROM {table}")


def load_customer_sessions(
    con: duckdb.DuckDBPyConnection, logger: logging.Logger
) -> None:
    """
    One row per session_id: the raw row with the greatest _load_ts, typed and
    normalized. Ties on _load_ts go to the row appended last (rowid).
    """
    con.execute(
        f"""
        WITH ranked AS (
            SELECT
                s.session_id,
                {parse_timestamp("s.created")}                         AS created_at,
                {lower_string("s.state")}                              AS state,
                {parse_decimal("s.total_usd")}                         AS total_usd,
                {parse_integer("s.number_of_cart_items")}              AS number_of_cart_items,
                {clean_string("s.store_integration_id")}               AS store_integration_id,
                {classify_channel("s.channel", "s.store_integration_id")} AS channel,
                s._load_ts,
                ROW_NUMBER() OVER (
                    PARTITION BY s.session_id
                    ORDER BY s._load_ts DESC, s.rowid DESC
                ) AS rn
            FROM bronze_customer_sessions_raw s
            WHERE NULLIF(TRIM(s.session_id), '') IS NOT NULL
        )
        INSERT INTO silver_customer_sessions (
            session_id, created_at, state, total_usd, number_of_cart_items,
            store_integration_id, channel, _src_load_ts
        )
        SELECT
            session_id, created_at, state, total_usd, number_of_cart_items,
            store_integration_id, channel, _load_ts
        FROM ranked
        WHERE rn = 1;
        """
    )


def load_effects_summary(
    con: duckdb.DuckDBPyConnection,
    logger: logging.Logger,
    discount_effect_types: Sequence[str] = DISCOUNT_EFFECT_TYPES,
) -> None:
    """
    Latest raw row per (session, effect_type), rolled up per session.

    Only allow-listed effect types add to discount_amount_usd (unparseable
    values count as 0). representative_effect_type is MAX(effect_type) over
    every type seen for the session, allow-listed or not.
    """
    if not discount_effect_types:
        raise ValueError("discount_effect_types must name at least one effect type")
    placeholders = ", ".join(["?"] * len(discount_effect_types))

    con.execute(
        f"""
        WITH latest AS (
            SELECT
                e.session_fk                                   AS session_id,
                e.effect_type,
                {parse_decimal("e.value")}                     AS value_num,
                e._load_ts,
                ROW_NUMBER() OVER (
                    PARTITION BY e.session_fk, e.effect_type
                    ORDER BY e._load_ts DESC, e.rowid DESC
                ) AS rn
            FROM bronze_effects_raw e
            WHERE NULLIF(TRIM(e.session_fk), '') IS NOT NULL
        ),
        rolled AS (
            SELECT
                session_id,
                SUM(CASE WHEN effect_type IN ({placeholders})
                         THEN COALESCE(value_num, 0) ELSE 0 END) AS discount_amount_usd,
                MAX(effect_type)                                 AS representative_effect_type,
                MAX(_load_ts)                                    AS _src_load_ts
            FROM latest
            WHERE rn = 1
            GROUP BY session_id
        )
        INSERT INTO silver_effects_summary (
            session_id, discount_amount_usd, representative_effect_type, _src_load_ts
        )
        SELECT session_id, discount_amount_usd, representative_effect_type, _src_load_ts
        FROM rolled;
        """,
        list(discount_effect_types),
    )


def load_sessions_with_discounts(
    con: duckdb.DuckDBPyConnection, logger: logging.Logger
) -> None:
    """
    Left join sessions to their discount rollup and store the reporting
    metrics. net_revenue exists only for closed sessions; discount_depth
    additionally needs a positive total.
    """
    con.execute(
        f"""
        INSERT INTO silver_sessions_with_discounts (
            session_id, created_at, state, number_of_cart_items, store_integration_id,
            channel, total_usd, discount_amount_usd, net_revenue, discount_depth,
            _src_load_ts
        )
        SELECT
            s.session_id,
            s.created_at,
            s.state,
            s.number_of_cart_items,
            s.store_integration_id,
            s.channel,
            s.total_usd,
            COALESCE(d.discount_amount_usd, 0)                              AS discount_amount_usd,
            CASE WHEN s.state = '{CLOSED_STATE}'
                 THEN s.total_usd - COALESCE(d.discount_amount_usd, 0)
            END                                                             AS net_revenue,
            CASE WHEN s.state = '{CLOSED_STATE}' AND s.total_usd > 0
                 THEN CAST(COALESCE(d.discount_amount_usd, 0) / s.total_usd AS DECIMAL(18, 6))
            END                                                             AS discount_depth,
            GREATEST(s._src_load_ts, COALESCE(d._src_load_ts, s._src_load_ts)) AS _src_load_ts
        FROM silver_customer_sessions s
        LEFT JOIN silver_effects_summary d
            ON d.session_id = s.session_id;
        """
    )


def verify_silver_integrity(
    con: duckdb.DuckDBPyConnection, logger: logging.Logger
) -> None:
    """
    Grain checks on the snapshot about to be committed:
      - session_id is unique in every silver table
      - every canonical session has exactly one merged row
    """
    problems = []
    for table in SILVER_TABLES:
        dupes = con.execute(
            f"""
            SELECT COUNT(*) FROM (
                SELECT session_id FROM {table}
                GROUP BY session_id
                HAVING COUNT(*) > 1
            )
            """
        ).fetchone()[0]
        if dupes:
            problems.append(f"{table}: {dupes} duplicated session_id value(s)")

    sessions = _count_rows(con, "silver_customer_sessions")
    merged = _count_rows(con, "silver_sessions_with_discounts")
    if sessions != merged:
        problems.append(
            f"silver_sessions_with_discounts has {merged} rows, "
            f"silver_customer_sessions has {sessions}"
        )

    if problems:
        raise SilverIntegrityError("; ".join(problems))
    logger.info(">> Integrity checks passed.")


def _run_stage(table, stage, con, logger, *args) -> None:
    started = time.perf_counter()
    logger.info(f">> Loading: {table}")
    stage(con, logger, *args)
    took = time.perf_counter() - started
    logger.info(
        f">> Load Duration ({table}): {took:.2f} seconds, rows={_count_rows(con, table)}"
    )
    logger.info(">> -------------")


def run_silver_transforms(
    con: duckdb.DuckDBPyConnection,
    logger: logging.Logger,
    discount_effect_types: Sequence[str] = DISCOUNT_EFFECT_TYPES,
) -> None:
    """
    Full reload of the silver layer from bronze as one unit of work.

    All three silver tables are cleared and repopulated inside a single
    transaction. Either every table reflects the new snapshot after commit,
    or the transaction is rolled back and the previous snapshot stays in
    place; the original error is re-raised to the caller. Row counts and
    durations are reported through the logger only.
    """
    batch_start = time.perf_counter()
    logger.info("=" * 48)
    logger.info("Loading Silver Layer (Bronze -> Silver)")
    logger.info("=" * 48)

    began = False
    try:
        con.begin()
        began = True

        truncate_silver(con, logger)
        _run_stage("silver_customer_sessions", load_customer_sessions, con, logger)
        _run_stage(
            "silver_effects_summary",
            load_effects_summary,
            con,
            logger,
            discount_effect_types,
        )
        _run_stage(
            "silver_sessions_with_discounts", load_sessions_with_discounts, con, logger
        )
        verify_silver_integrity(con, logger)

        con.commit()
        began = False

    except Exception as e:
        state = "not started"
        if began:
            try:
                con.rollback()
                state = "rolled back"
            except Exception as rollback_err:
                state = f"rollback failed: {rollback_err}"
                logger.error(f"Rollback also failed: {rollback_err}", exc_info=True)
        logger.error("=" * 48)
        logger.error("ERROR OCCURRED DURING LOADING SILVER LAYER")
        logger.error(f"Error Message: {e}")
        logger.error(f"Error Type   : {type(e).__name__}")
        logger.error(f"Transaction  : {state}")
        logger.error("=" * 48, exc_info=True)
        raise

    took = time.perf_counter() - batch_start
    logger.info("=" * 48)
    logger.info("Loading Silver Layer is Completed")
    logger.info(f"   - Total Load Duration: {took:.2f} seconds")
    for table in reversed(SILVER_TABLES):
        logger.info(f"   - {table}: {_count_rows(con, table)} rows")
    logger.info("=" * 48)


if __name__ == "__main__":
    cfg = load_config()
    run_ts = resolve_run_ts(cfg.get("run_ts_format", "%Y%m%d_%H%M%S"))
    logger, _ = configure_logging(
        "silver_transforms", logs_dir=cfg.get("paths.logs_dir", "logs"), run_ts=run_ts
    )

    con = duckdb.connect(database=cfg.get("database_path", DB_FILE), read_only=False)
    try:
        logger.info("Successfully connected to DuckDB for standalone run.")
        run_silver_transforms(
            con,
            logger,
            discount_effect_types=cfg.get(
                "silver.discount_effect_types", DISCOUNT_EFFECT_TYPES
            ),
        )
    finally:
        con.close()
        logger.info("DuckDB connection closed.")
