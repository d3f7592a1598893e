"""
Configuration loading: config.yaml for settings, .env for secrets.
"""

import copy
import os

import yaml
from dotenv import load_dotenv


DEFAULT_CONFIG = {
    "claude": {
        "api_key_env": "ANTHROPIC_API_KEY",
        "model": "claude-sonnet-4-20250514",
        "max_tokens": 2000,
        "weekly_max_tokens": 4000,
        "temperature": 0.3,
        "timeout": 60,
    },
    "database": {"path": "data/workout.db"},
    "program": {"path": "program.yaml"},
    "history": {"daily_limit": 50, "weekly_limit": 150},
    "logging": {"level": "INFO", "file": None},
}


def _merge(base, override):
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path="config.yaml", env_file=None):
    """
    Load configuration from config.yaml layered over defaults.

    Environment overrides (after .env is loaded): CLAUDE_MODEL,
    CLAUDE_TIMEOUT, LOG_LEVEL, LIFTCOACH_DB_PATH.
    """
    load_dotenv(env_file)

    file_config = {}
    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            file_config = yaml.safe_load(f) or {}

    config = _merge(DEFAULT_CONFIG, file_config)

    if os.getenv("CLAUDE_MODEL"):
        config["claude"]["model"] = os.getenv("CLAUDE_MODEL")
    if os.getenv("CLAUDE_TIMEOUT"):
        try:
            config["claude"]["timeout"] = float(os.getenv("CLAUDE_TIMEOUT"))
        except ValueError:
            pass
    if os.getenv("LOG_LEVEL"):
        config["logging"]["level"] = os.getenv("LOG_LEVEL")
    if os.getenv("LIFTCOACH_DB_PATH"):
        config["database"]["path"] = os.getenv("LIFTCOACH_DB_PATH")

    return config


def get_api_key(config):
    """Return the Anthropic API key named by claude.api_key_env, or None."""
    return os.getenv(config["claude"]["api_key_env"])
