import logging

import duckdb

# --- Configuration ---
DB_FILE = "case_q1_2025.db"

logger = logging.getLogger("setup_database")


def create_bronze_tables(con: duckdb.DuckDBPyConnection) -> None:
    """
    Raw landing tables: every source column kept as text to preserve fidelity,
    plus provenance (_file_name) and ingestion time (_load_ts).
    """
    con.execute(
        """
    CREATE TABLE IF NOT EXISTS bronze_customer_sessions_raw (
        -- Source columns (no primary key - re-ingested updates share session_id)
        session_id VARCHAR,
        created VARCHAR,
        closedAt VARCHAR,
        cancelledAt VARCHAR,
        state VARCHAR,
        total_usd VARCHAR,
        customer_profile_fk VARCHAR,
        store_integration_id VARCHAR,
        number_of_cart_items VARCHAR,
        channel VARCHAR,

        -- Audit
        _file_name VARCHAR,
        _load_ts TIMESTAMP NOT NULL DEFAULT CAST(current_timestamp AS TIMESTAMP)
    );
    """
    )

    con.execute(
        """
    CREATE TABLE IF NOT EXISTS bronze_effects_raw (
        effect_id VARCHAR,
        session_fk VARCHAR,
        customer_profile_fk VARCHAR,
        created_ts VARCHAR,
        effect_type VARCHAR,
        name VARCHAR,
        value VARCHAR,

        -- Audit
        _file_name VARCHAR,
        _load_ts TIMESTAMP NOT NULL DEFAULT CAST(current_timestamp AS TIMESTAMP)
    );
    """
    )
    logger.info("Bronze tables are set up (append-only, duplicates allowed).")


def create_silver_tables(con: duckdb.DuckDBPyConnection) -> None:
    """
    Silver targets. session_id uniqueness is asserted by the reload itself
    (verify_silver_integrity) instead of a PRIMARY KEY, because each reload
    deletes and re-inserts the same keys inside one transaction.
    """
    con.execute(
        """
    -- 1) Typed, normalized, deduplicated sessions
    CREATE TABLE IF NOT EXISTS silver_customer_sessions (
        session_id VARCHAR NOT NULL,
        created_at TIMESTAMP,
        state VARCHAR,
        total_usd DECIMAL(18, 2),
        number_of_cart_items INTEGER,
        store_integration_id VARCHAR,
        channel VARCHAR,
        _src_load_ts TIMESTAMP NOT NULL
    );

    -- 2) Per-session discount rollup
    CREATE TABLE IF NOT EXISTS silver_effects_summary (
        session_id VARCHAR NOT NULL,
        discount_amount_usd DECIMAL(18, 2) NOT NULL DEFAULT 0,
        representative_effect_type VARCHAR,
        _src_load_ts TIMESTAMP NOT NULL
    );

    -- 3) Sessions joined to discounts, metrics stored at load time
    CREATE TABLE IF NOT EXISTS silver_sessions_with_discounts (
        session_id VARCHAR NOT NULL,
        created_at TIMESTAMP,
        state VARCHAR,
        number_of_cart_items INTEGER,
        store_integration_id VARCHAR,
        channel VARCHAR,
        total_usd DECIMAL(18, 2),
        discount_amount_usd DECIMAL(18, 2),
        net_revenue DECIMAL(18, 2),
        discount_depth DECIMAL(18, 6),
        _src_load_ts TIMESTAMP NOT NULL
    );
    """
    )
    logger.info("Silver tables are set up.")


def setup_database(db_file: str = None) -> None:
    """
    Connects to the DuckDB database and creates the bronze and silver tables
    if they don't exist. Gold objects are views and are (re)built by
    gold_transforms.
    """
    db_path = db_file or DB_FILE
    con = duckdb.connect(db_path)
    logger.info(f"Successfully connected to DuckDB database: {db_path}")
    try:
        create_bronze_tables(con)
        create_silver_tables(con)
    finally:
        con.close()
    logger.info("Database setup complete. Connection closed.")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    logger.info("--- Starting Database Setup ---")
    setup_database()
    logger.info("--- Database Setup Finished ---")
