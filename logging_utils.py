import logging
import os
import sys
from datetime import datetime

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def resolve_run_ts(fmt: str = "%Y%m%d_%H%M%S") -> str:
    """
    Return the shared run timestamp. Child jobs inherit RUN_TS from the
    orchestrator so every log file of one run carries the same suffix.
    """
    run_ts = os.getenv("RUN_TS")
    if not run_ts:
        run_ts = datetime.now().strftime(fmt)
        os.environ["RUN_TS"] = run_ts
    return run_ts


def layer_log_path(logs_dir: str, layer: str, run_ts: str = None) -> str:
    """logs/<layer>_<RUN_TS>.log, e.g. logs/silver_transforms_20250402_060000.log"""
    return os.path.join(logs_dir, f"{layer}_{run_ts or resolve_run_ts()}.log")


def configure_logging(
    layer: str, logs_dir: str = "logs", run_ts: str = None, level: int = logging.INFO
):
    """
    Send every pipeline log record to stdout and to the layer's run file.

    Root handlers are replaced, so calling this again (next layer, next test)
    never duplicates output. Returns the layer's logger and its log path.
    """
    log_path = layer_log_path(logs_dir, layer, run_ts)
    os.makedirs(logs_dir, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in (
        logging.StreamHandler(stream=sys.stdout),
        logging.FileHandler(log_path, encoding="utf-8"),
    ):
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logger = logging.getLogger(layer)
    logger.info(f"Run log: {log_path}")
    return logger, log_path
