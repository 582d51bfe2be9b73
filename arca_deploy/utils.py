"""Script helpers."""

import logging
import os
from pathlib import Path
from typing import Optional

import coloredlogs


def setup_console_logging(
    default_log_level="info",
    log_file: Path | None = None,
    std_out_log_level: Optional[int] = None,
    clear_log_file=True,
) -> logging.Logger:
    """Set up coloured log output for deployment scripts.

    - ``LOG_LEVEL`` environment variable overrides the default level
    - Tune down some noisy dependency library logging

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """
    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if not std_out_log_level:
        std_out_log_level = numeric_level

    fmt = "%(asctime)s %(name)-30s %(message)s"
    date_fmt = "%H:%M:%S"

    coloredlogs.install(level=std_out_log_level, fmt=fmt, date_fmt=date_fmt)

    if log_file:
        assert isinstance(log_file, Path), "log_file must be a Path"

        log_file.parent.mkdir(parents=True, exist_ok=True)

        # The file always gets at least INFO, the env var controls only terminal output
        min_level = min(logging.INFO, numeric_level)
        mode = "w" if clear_log_file else "a"

        file_handler = logging.FileHandler(log_file, mode=mode, encoding="utf-8")
        file_handler.setLevel(min_level)
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))

        root = logging.getLogger()
        root.setLevel(min_level)
        root.addHandler(file_handler)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()


def parse_vault_ids(value: str | None) -> list[str] | None:
    """Comma separated vault ids from an environment variable.

    :return:
        ``None`` if nothing was given
    """
    if not value:
        return None
    ids = [v.strip() for v in value.split(",") if v.strip()]
    return ids or None


def parse_env_flag(value: str | None) -> bool:
    """``true``, ``1`` or ``yes`` as a boolean switch."""
    if not value:
        return False
    return value.strip().lower() in ("true", "1", "yes")
