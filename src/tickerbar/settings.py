"""
Service settings: config.yaml first, then TICKERBAR_* environment overrides
(a .env file in the working directory is loaded before reading the environment).
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from tickerbar.core.models import AppConfig

BASE_DIR = Path(__file__).resolve().parent.parent.parent
CONFIG_PATH = BASE_DIR / "config.yaml"

ENV_OVERRIDES = {
    "TICKERBAR_BASE_URL": "base_url",
    "TICKERBAR_DB_PATH": "db_path",
    "TICKERBAR_LOG_LEVEL": "log_level",
}

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class Settings(BaseModel):
    base_url: str = Field("https://query1.finance.yahoo.com", description="Chart endpoint host")
    request_timeout: float = Field(10.0, gt=0, description="Per-attempt timeout in seconds")
    retry_attempts: int = Field(3, ge=1, description="Attempts per fetch, including the first")
    retry_backoff: float = Field(1.0, ge=0, description="Seconds between attempts")
    history_days: int = Field(30, ge=1, description="History window in days")
    db_path: str = Field("tickerbar.db", description="sqlite file for the config store")
    log_level: str = Field("INFO")
    defaults: AppConfig = Field(default_factory=AppConfig, description="Seed configuration for a new store")


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    load_dotenv()
    config_path = Path(path or os.getenv("TICKERBAR_CONFIG") or CONFIG_PATH)

    data = {}
    if config_path.exists():
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

    for env_key, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_key)
        if value:
            data[field_name] = value

    return Settings.model_validate(data)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
