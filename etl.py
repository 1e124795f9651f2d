import logging

import duckdb
from dotenv import load_dotenv

from config_loader import load_config
from gold_transforms import run_gold_transforms
from load_bronze import load_bronze
from logging_utils import configure_logging, resolve_run_ts
from setup_database import setup_database
from silver_transforms import run_silver_transforms


def run_full_reload(cfg, logger: logging.Logger) -> None:
    """
    Landing CSVs -> bronze (append), then a full silver reload, then the
    gold views. Any failure is logged and propagated to the caller.
    """
    db_file = cfg.get("database_path")
    setup_database(db_file)

    con = duckdb.connect(database=db_file, read_only=False)
    try:
        load_bronze(
            con,
            logger,
            landing_dir=str(cfg.get_path("paths.landing_dir")),
            processed_dir=str(cfg.get_path("paths.processed_dir")),
            sessions_file=cfg.get("bronze.sessions_file"),
            effects_file=cfg.get("bronze.effects_file"),
            run_ts=resolve_run_ts(),
        )

        run_silver_transforms(
            con,
            logger,
            discount_effect_types=cfg.get("silver.discount_effect_types"),
        )

        # Gold is views only; rebuilt in its own transaction once silver is committed
        window_start, window_end = cfg.window()
        con.begin()
        try:
            run_gold_transforms(
                con,
                logger,
                window_start=window_start,
                window_end=window_end,
                online_store_key=cfg.get("gold.online_store_key", "ONLINE"),
            )
            con.commit()
        except Exception:
            con.rollback()
            raise
    finally:
        con.close()
        logger.info("DuckDB connection closed.")


def main():
    load_dotenv()
    cfg = load_config()

    run_ts = resolve_run_ts(cfg.get("run_ts_format", "%Y%m%d_%H%M%S"))
    logger, _ = configure_logging(
        "etl", logs_dir=cfg.get("paths.logs_dir", "logs"), run_ts=run_ts
    )

    logger.info("--- Starting ETL Process ---")
    try:
        run_full_reload(cfg, logger)
    except Exception as e:
        logger.error(f"ETL run failed: {type(e).__name__}: {e}")
        raise
    logger.info("--- ETL Process Finished ---")


if __name__ == "__main__":
    main()
