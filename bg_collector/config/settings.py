#!/usr/bin/env python3
"""
Collector settings for the Battlegrounds game collector.

Persists:
- Where the tracker's log lives and how much of it to tail
- Retry and settling delays
- Where match records are written
- Whether (and where) records are submitted over HTTP

Values come from the JSON settings file, then environment variables
(optionally from a .env file) override them.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, field, fields
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".bg_collector"
SETTINGS_FILE = CONFIG_DIR / "settings.json"

DEV_API_URL = "https://hilo-backend.azurewebsites.net/api/hearthstone-battlegrounds/submit-game-data/"
PROD_API_URL = "https://hilo-production.azurewebsites.net/api/hearthstone-battlegrounds/submit-game-data/"

# Decimal kilobytes: 500 KB is the tracker plugin's 500000-byte tail window
BYTES_PER_KB = 1000

# Hero card ids the game uses for the shop keeper between fights
DEFAULT_SHOP_PLACEHOLDER_HERO_IDS = ["TB_BaconShopBob", "TB_BaconShop_HERO_PH"]


def default_hdt_log_path() -> str:
    base = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
    return str(Path(base) / "HearthstoneDeckTracker" / "Logs" / "hdt_log.txt")


def default_output_dir() -> str:
    return str(CONFIG_DIR / "BGGames")


# Environment variable -> (field name, converter)
_ENV_OVERRIDES = {
    "BG_COLLECTOR_HDT_LOG": ("hdt_log_path", str),
    "BG_COLLECTOR_OUTPUT_DIR": ("output_dir", str),
    "BG_COLLECTOR_API_URL": ("api_url", str),
    "BG_COLLECTOR_SUBMIT": ("submit_enabled", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
    "BG_COLLECTOR_MMR_DELAY": ("mmr_settle_delay", float),
}


@dataclass
class CollectorSettings:
    """Settings for one collector instance."""

    # Tracker log
    hdt_log_path: str = field(default_factory=default_hdt_log_path)
    tail_window_kb: int = 500
    log_read_attempts: int = 3
    retry_backoff_seconds: float = 0.1

    # Deferred work
    mmr_settle_delay: float = 5.0
    trailing_parse_delay: float = 3.0

    # Output
    output_dir: str = field(default_factory=default_output_dir)

    # Submission
    submit_enabled: bool = False
    api_url: str = DEV_API_URL
    request_timeout: float = 10.0

    # Combat inference
    shop_placeholder_hero_ids: List[str] = field(
        default_factory=lambda: list(DEFAULT_SHOP_PLACEHOLDER_HERO_IDS)
    )

    @classmethod
    def load(cls, path: Optional[Path] = None, use_env: bool = True) -> "CollectorSettings":
        """Load settings from file (or defaults), then apply environment overrides."""
        path = Path(path) if path else SETTINGS_FILE
        settings = cls()
        if path.exists():
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                known = {f.name for f in fields(cls)}
                unknown = sorted(set(data) - known)
                if unknown:
                    logger.warning(f"Ignoring unknown settings keys: {unknown}")
                settings = cls(**{k: v for k, v in data.items() if k in known})
                logger.debug(f"Loaded settings from {path}")
            except Exception as e:
                logger.warning(f"Failed to load settings from {path}: {e}. Using defaults.")
                settings = cls()
        else:
            logger.info("No settings file found. Using defaults.")

        if use_env:
            settings.apply_env()
        return settings

    def apply_env(self):
        """Override fields from the environment (and a .env file if present)."""
        load_dotenv()
        for env_name, (attr, convert) in _ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                setattr(self, attr, convert(raw))
                logger.debug(f"Setting {attr} overridden by {env_name}")
            except ValueError as e:
                logger.warning(f"Ignoring invalid {env_name}={raw!r}: {e}")

    def save(self, path: Optional[Path] = None):
        """Save settings to file."""
        path = Path(path) if path else SETTINGS_FILE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(asdict(self), f, indent=2)
                logger.debug(f"Saved settings to {path}")
        except Exception as e:
            logger.error(f"Failed to save settings: {e}")

    def use_production_endpoint(self, enabled: bool = True):
        self.api_url = PROD_API_URL if enabled else DEV_API_URL

    @property
    def tail_window_bytes(self) -> int:
        return max(1, self.tail_window_kb) * BYTES_PER_KB
