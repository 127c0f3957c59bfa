"""
Configuration management for Jazz grooves.

Config files are stored in ~/.jazz/ for easy access:
- ~/.jazz/config.yaml  - All settings (groove scheduling, catch-up, history)
- ~/.jazz/.env         - API keys and secrets for unattended runs

Runtime data lives next to the config:
- ~/.jazz/run-history.json   - Run attempts (JSON array)
- ~/.jazz/run-history.lock   - Directory mutex guarding the history file
- ~/.jazz/schedules/*.json   - One scheduled entry per groove
- ~/.jazz/logs/              - Scheduler output and background catch-up logs
"""

import copy
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# =============================================================================
# Config paths
# =============================================================================

def get_jazz_home() -> Path:
    """Get the Jazz home directory (~/.jazz)."""
    return Path(os.getenv("JAZZ_HOME", Path.home() / ".jazz"))

def get_config_path() -> Path:
    """Get the main config file path."""
    return get_jazz_home() / "config.yaml"

def get_env_path() -> Path:
    """Get the .env file path (for API keys)."""
    return get_jazz_home() / ".env"

def get_data_dir() -> Path:
    """Directory holding run history, the history lock and schedule metadata."""
    return get_jazz_home()

def get_schedules_dir() -> Path:
    return get_data_dir() / "schedules"

def get_logs_dir() -> Path:
    return get_jazz_home() / "logs"

def ensure_jazz_home():
    """Ensure ~/.jazz directory structure exists."""
    get_jazz_home().mkdir(parents=True, exist_ok=True)
    get_schedules_dir().mkdir(parents=True, exist_ok=True)
    get_logs_dir().mkdir(parents=True, exist_ok=True)


# =============================================================================
# Config loading/saving
# =============================================================================

DEFAULT_CONFIG = {
    "grooves": {
        # Run history retention (oldest records are dropped first)
        "max_run_history_records": 100,
        # How long after a missed firing a catch-up is still allowed (seconds)
        "default_max_catch_up_age": 60 * 60 * 24,
        "default_max_iterations": 50,

        # Directory lock guarding run-history.json
        "lock_timeout": 30,        # seconds before a held lock is considered stale
        "lock_max_retries": 10,
        "lock_retry_delay": 0.1,   # seconds between attempts

        # argv prefix the OS scheduler uses to launch the groove runner.
        # Empty means: `jazz` on PATH, else `<python> -m jazz`.
        "invocation": [],
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, preserving nested defaults.

    Keys in *override* take precedence. If both values are dicts the merge
    recurses, so a user who overrides only ``grooves.lock_timeout`` keeps the
    remaining ``grooves`` defaults intact.
    """
    result = base.copy()
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config() -> Dict[str, Any]:
    """Load configuration from ~/.jazz/config.yaml."""
    config_path = get_config_path()

    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}
            if not isinstance(user_config, dict):
                raise ValueError("top-level value must be a mapping")

            config = _deep_merge(config, user_config)
        except Exception as e:
            logger.warning("Failed to load config %s: %s", config_path, e)

    return config


def save_config(config: Dict[str, Any]):
    """Save configuration to ~/.jazz/config.yaml."""
    ensure_jazz_home()
    config_path = get_config_path()

    with open(config_path, 'w', encoding="utf-8") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def get_groove_settings() -> Dict[str, Any]:
    """The ``grooves`` section of the merged config."""
    return load_config()["grooves"]


def load_env_file():
    """Load ~/.jazz/.env into the process environment (values in the file win)."""
    env_path = get_env_path()
    if not env_path.exists():
        return
    try:
        load_dotenv(str(env_path), override=True, encoding="utf-8")
    except UnicodeDecodeError:
        load_dotenv(str(env_path), override=True, encoding="latin-1")


def get_scheduler_invocation(settings: Optional[Dict[str, Any]] = None) -> List[str]:
    """argv prefix that launches the groove runner from launchd/cron."""
    settings = settings if settings is not None else get_groove_settings()
    configured = settings.get("invocation") or []
    if configured:
        return [str(token) for token in configured]

    jazz_bin = shutil.which("jazz")
    if jazz_bin:
        return [jazz_bin]

    return [sys.executable, "-m", "jazz"]


# =============================================================================
# Logging
# =============================================================================

_LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def setup_file_logging(filename: str = "grooves.log") -> Path:
    """Attach a rotating file handler under ~/.jazz/logs (once per file)."""
    log_dir = get_logs_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / filename

    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_path:
            return log_path

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
    )
    file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(file_handler)
    if root.level == logging.NOTSET or root.level > logging.INFO:
        root.setLevel(logging.INFO)
    return log_path
