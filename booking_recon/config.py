#!/usr/bin/env python3

import os
import logging
from dataclasses import dataclass
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = 'sqlite:///bookings.db'
DEFAULT_INPUT_FILE = 'Sales Calculation 2025.txt'
DEFAULT_OUTPUT_DIR = 'tracking-reports'
DEFAULT_REBOOKING_WINDOW_DAYS = 30


@dataclass(frozen=True)
class Settings:
    db_url: str = DEFAULT_DB_URL
    input_file: str = DEFAULT_INPUT_FILE
    output_dir: str = DEFAULT_OUTPUT_DIR
    rebooking_window_days: int = DEFAULT_REBOOKING_WINDOW_DAYS
    log_level: str = 'INFO'


def load_settings(env_file=None):
    """
    Load settings from the environment, reading a .env file first.

    Args:
        env_file (str, optional): Explicit .env path; the nearest .env otherwise

    Returns:
        Settings: Resolved configuration
    """
    load_dotenv(dotenv_path=env_file, override=True)

    window = os.getenv('RECON_REBOOKING_WINDOW_DAYS', str(DEFAULT_REBOOKING_WINDOW_DAYS))
    try:
        window_days = int(window)
    except ValueError:
        logger.warning(f"⚠️ Invalid RECON_REBOOKING_WINDOW_DAYS={window!r} - using {DEFAULT_REBOOKING_WINDOW_DAYS}")
        window_days = DEFAULT_REBOOKING_WINDOW_DAYS

    return Settings(
        db_url=os.getenv('RECON_DB_URL', DEFAULT_DB_URL),
        input_file=os.getenv('RECON_INPUT_FILE', DEFAULT_INPUT_FILE),
        output_dir=os.getenv('RECON_OUTPUT_DIR', DEFAULT_OUTPUT_DIR),
        rebooking_window_days=window_days,
        log_level=os.getenv('RECON_LOG_LEVEL', 'INFO').upper(),
    )
