from __future__ import annotations

import json
import os

from .common import DEFAULT_RESUME_DELAY_MS, MAX_RESUME_DELAY_MS

CONFIG_DIR_NAME = "SmartPause"

DEFAULT_CONFIG = {
    "enabled": True,
    "resume_delay_ms": DEFAULT_RESUME_DELAY_MS,
}


def config_path() -> str:
    if os.name == "nt":
        base = os.environ.get("APPDATA") or os.path.expanduser("~")
    else:
        base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    folder = os.path.join(base, CONFIG_DIR_NAME)
    os.makedirs(folder, exist_ok=True)
    return os.path.join(folder, "config.json")


def clamp_resume_delay(value) -> int:
    try:
        delay = int(value)
    except (TypeError, ValueError):
        return DEFAULT_RESUME_DELAY_MS
    return max(0, min(MAX_RESUME_DELAY_MS, delay))


def normalize_config(cfg) -> dict:
    """Fill in defaults and coerce known keys; unknown keys are kept as-is."""
    result = dict(cfg) if isinstance(cfg, dict) else {}
    result["enabled"] = bool(result.get("enabled", DEFAULT_CONFIG["enabled"]))
    result["resume_delay_ms"] = clamp_resume_delay(
        result.get("resume_delay_ms", DEFAULT_CONFIG["resume_delay_ms"])
    )
    return result


def load_config() -> dict:
    p = config_path()
    if not os.path.exists(p):
        return dict(DEFAULT_CONFIG)
    try:
        with open(p, "r", encoding="utf-8") as f:
            return normalize_config(json.load(f))
    except (OSError, ValueError):
        return dict(DEFAULT_CONFIG)


def save_config(cfg: dict) -> None:
    with open(config_path(), "w", encoding="utf-8") as f:
        json.dump(normalize_config(cfg), f, indent=2)
