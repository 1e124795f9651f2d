import logging
from datetime import date

import duckdb

from config_loader import load_config
from logging_utils import configure_logging, resolve_run_ts
from normalizers import ONLINE, sql_literal

DB_FILE = "case_q1_2025.db"

# Q1 2025 reporting window, half-open [start, end)
WINDOW_START = "2025-01-01"
WINDOW_END = "2025-04-01"
ONLINE_STORE_KEY = "ONLINE"


def _as_date(value) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value))


def _store_key_expr(online_store_key: str) -> str:
    # Blank store id on an online session -> synthetic online store
    return f"""COALESCE(
            NULLIF(TRIM(store_integration_id), ''),
            CASE WHEN LOWER(TRIM(channel)) = {sql_literal(ONLINE.lower())}
                 THEN {sql_literal(online_store_key)} END
        )"""


def run_gold_transforms(
    con: duckdb.DuckDBPyConnection,
    logger: logging.Logger,
    window_start=WINDOW_START,
    window_end=WINDOW_END,
    online_store_key: str = ONLINE_STORE_KEY,
) -> None:
    """
    Build the gold star schema as views over silver for the reporting window.
    Views only read silver; they are safe to rebuild after every reload.
    """
    logger.info("--- Starting Gold Layer Transformations ---")
    try:
        start, end = _as_date(window_start), _as_date(window_end)
        if start >= end:
            raise ValueError(f"Empty reporting window: {start} >= {end}")

        create_gold_dim_date(con, logger, start, end)
        create_gold_dim_store(con, logger, start, end, online_store_key)
        create_gold_fact_orders(con, logger, start, end, online_store_key)

        logger.info("--- Gold Layer Transformations Completed Successfully ---")

    except Exception as e:
        logger.error(f"An error occurred during gold transformations: {e}", exc_info=True)
        raise


def create_gold_dim_date(con, logger, start: date, end: date):
    logger.info("Creating gold_dim_date...")
    con.execute(
        f"""
        CREATE OR REPLACE VIEW gold_dim_date AS
        WITH d AS (
            SELECT CAST(ts AS DATE) AS dt
            FROM range(
                TIMESTAMP '{start.isoformat()}',
                TIMESTAMP '{end.isoformat()}',
                INTERVAL 1 DAY
            ) AS t(ts)
        )
        SELECT
            year(dt) * 10000 + month(dt) * 100 + day(dt) AS date_key,
            dt                                           AS full_date,
            year(dt)                                     AS year,
            quarter(dt)                                  AS quarter,
            month(dt)                                    AS month,
            monthname(dt)                                AS month_name,
            day(dt)                                      AS day_of_month
        FROM d;
        """
    )


def create_gold_dim_store(con, logger, start: date, end: date, online_store_key: str):
    logger.info("Creating gold_dim_store...")
    con.execute(
        f"""
        CREATE OR REPLACE VIEW gold_dim_store AS
        WITH base AS (
            SELECT DISTINCT
                {_store_key_expr(online_store_key)} AS store_integration_id
            FROM silver_customer_sessions
            WHERE created_at >= DATE '{start.isoformat()}'
              AND created_at <  DATE '{end.isoformat()}'
        )
        SELECT
            store_integration_id,
            store_integration_id = {sql_literal(online_store_key)} AS is_online
        FROM base
        WHERE store_integration_id IS NOT NULL;
        """
    )


def create_gold_fact_orders(con, logger, start: date, end: date, online_store_key: str):
    """
    Session/order grain. net_revenue and discount_depth are the values stored
    by the silver merge, not re-derived here.
    """
    logger.info("Creating gold_fact_orders...")
    con.execute(
        f"""
        CREATE OR REPLACE VIEW gold_fact_orders AS
        SELECT
            year(created_at) * 10000 + month(created_at) * 100 + day(created_at) AS date_key,
            {_store_key_expr(online_store_key)}                 AS store_integration_id,
            channel,
            state,
            number_of_cart_items                                AS items,
            CAST(total_usd AS DECIMAL(18, 2))                   AS total_usd,
            CAST(COALESCE(discount_amount_usd, 0) AS DECIMAL(18, 2)) AS discount_amount_usd,
            CAST(net_revenue AS DECIMAL(18, 2))                 AS net_revenue,
            CAST(discount_depth AS DECIMAL(18, 6))              AS discount_depth
        FROM silver_sessions_with_discounts
        WHERE created_at >= DATE '{start.isoformat()}'
          AND created_at <  DATE '{end.isoformat()}';
        """
    )


if __name__ == "__main__":
    cfg = load_config()
    run_ts = resolve_run_ts(cfg.get("run_ts_format", "%Y%m%d_%H%M%S"))
    logger, _ = configure_logging(
        "gold_transforms", logs_dir=cfg.get("paths.logs_dir", "logs"), run_ts=run_ts
    )

    con = None
    try:
        con = duckdb.connect(database=cfg.get("database_path", DB_FILE), read_only=False)
        logger.info("Successfully connected to DuckDB for standalone run.")

        con.begin()
        run_gold_transforms(
            con,
            logger,
            window_start=cfg.get("gold.window_start", WINDOW_START),
            window_end=cfg.get("gold.window_end", WINDOW_END),
            online_store_key=cfg.get("gold.online_store_key", ONLINE_STORE_KEY),
        )
        con.commit()
        logger.info("Standalone gold transforms committed.")

    except Exception as e:
        logger.error(f"Standalone gold transformations run failed: {e}", exc_info=True)
        if con:
            con.rollback()
            logger.info("Transaction rolled back.")
        raise
    finally:
        if con:
            con.close()
            logger.info("DuckDB connection closed.")
