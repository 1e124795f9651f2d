import logging
import os
from datetime import datetime, timezone
from typing import Dict, List

import duckdb
import pandas as pd

from config_loader import load_config
from logging_utils import configure_logging, resolve_run_ts

DB_FILE = "case_q1_2025.db"
LANDING_DIR = "landing"
PROCESSED_DIR = "processed"

SESSION_COLUMNS = [
    "session_id",
    "created",
    "closedAt",
    "cancelledAt",
    "state",
    "total_usd",
    "customer_profile_fk",
    "store_integration_id",
    "number_of_cart_items",
    "channel",
]

EFFECT_COLUMNS = [
    "effect_id",
    "session_fk",
    "customer_profile_fk",
    "created_ts",
    "effect_type",
    "name",
    "value",
]


def read_landing_csv(
    filepath: str, expected_columns: List[str], logger: logging.Logger
) -> pd.DataFrame:
    """
    Read a landing CSV with every column as text. Only empty fields become
    NULL; literal strings such as 'NA' or 'null' are kept as-is.
    """
    df = pd.read_csv(
        filepath,
        dtype=str,
        keep_default_na=False,
        na_values=[""],
        encoding="utf-8",
    )

    missing = [c for c in expected_columns if c not in df.columns]
    if missing:
        raise ValueError(f"{os.path.basename(filepath)} is missing columns: {missing}")

    extra = [c for c in df.columns if c not in expected_columns]
    if extra:
        logger.warning(f"Ignoring unexpected columns in {filepath}: {extra}")

    df = df[expected_columns].astype(object)
    return df.where(df.notna(), None)


def load_landing_file(
    con: duckdb.DuckDBPyConnection,
    logger: logging.Logger,
    filepath: str,
    table: str,
    columns: List[str],
    load_ts: datetime,
) -> int:
    """Append one landing file to its bronze table. Returns rows inserted."""
    df = read_landing_csv(filepath, columns, logger)
    if df.empty:
        logger.info(f"No records in {filepath}. Nothing to insert.")
        return 0

    df["_file_name"] = os.path.basename(filepath)
    df["_load_ts"] = pd.Timestamp(load_ts)

    target_columns = columns + ["_file_name", "_load_ts"]
    con.register("df_to_load", df)
    try:
        con.execute(
            f"""
            INSERT INTO {table} ({", ".join(target_columns)})
            SELECT {", ".join(target_columns)} FROM df_to_load
            """
        )
    finally:
        con.unregister("df_to_load")
    return len(df)


def load_bronze(
    con: duckdb.DuckDBPyConnection,
    logger: logging.Logger,
    landing_dir: str = LANDING_DIR,
    processed_dir: str = PROCESSED_DIR,
    sessions_file: str = "customer_sessions.csv",
    effects_file: str = "effects.csv",
    run_ts: str = None,
) -> Dict[str, int]:
    """
    Append landing CSVs to the bronze raw tables, one transaction per file.

    A file is moved to processed_dir only after its insert has committed, so
    a failed file stays in landing for the next run. Missing files are
    skipped: an empty raw store is not an error.
    """
    run_ts = run_ts or datetime.now().strftime("%Y%m%d_%H%M%S")
    sources = [
        (sessions_file, "bronze_customer_sessions_raw", SESSION_COLUMNS),
        (effects_file, "bronze_effects_raw", EFFECT_COLUMNS),
    ]
    loaded = {}

    for file_name, table, columns in sources:
        filepath = os.path.join(landing_dir, file_name)
        if not os.path.exists(filepath):
            logger.warning(f"Landing file not found, skipping: {filepath}")
            loaded[table] = 0
            continue

        started = datetime.now()
        load_ts = datetime.now(timezone.utc).replace(tzinfo=None)
        logger.info(f"Loading {filepath} -> {table}")

        con.begin()
        try:
            inserted = load_landing_file(con, logger, filepath, table, columns, load_ts)
            con.commit()
        except Exception as e:
            con.rollback()
            logger.error(f"Bronze load of {filepath} failed: {e}. Rolled back.", exc_info=True)
            raise

        os.makedirs(processed_dir, exist_ok=True)
        stem, ext = os.path.splitext(file_name)
        dest_path = os.path.join(processed_dir, f"{stem}_{run_ts}{ext}")
        os.rename(filepath, dest_path)

        took = (datetime.now() - started).total_seconds()
        logger.info(
            f"File done: {filepath} table={table} inserted={inserted} "
            f"moved_to={dest_path} duration_s={took:.2f}"
        )
        loaded[table] = inserted

    for table, rows in loaded.items():
        logger.info(f"   - {table}: {rows} rows appended")
    return loaded


if __name__ == "__main__":
    cfg = load_config()
    run_ts = resolve_run_ts(cfg.get("run_ts_format", "%Y%m%d_%H%M%S"))
    logger, _ = configure_logging(
        "load_bronze", logs_dir=cfg.get("paths.logs_dir", "logs"), run_ts=run_ts
    )

    con = duckdb.connect(database=cfg.get("database_path", DB_FILE), read_only=False)
    try:
        load_bronze(
            con,
            logger,
            landing_dir=cfg.get("paths.landing_dir", LANDING_DIR),
            processed_dir=cfg.get("paths.processed_dir", PROCESSED_DIR),
            sessions_file=cfg.get("bronze.sessions_file"),
            effects_file=cfg.get("bronze.effects_file"),
            run_ts=run_ts,
        )
    finally:
        con.close()
