"""Configuration management for Visage"""

import json
import os
from dataclasses import dataclass, asdict, fields
from typing import Optional

from visage.constants import (
    LOOP_DURATION_MS, DEFAULT_AUDIO_VOLUME, FADE_STEP_MS,
    KIND_IDENTITY, KIND_OVERLAY,
)
from visage.utils.logger import loggerRaise, set_debug_mode, setup_logging


@dataclass
class VisageSettings:
    """Runtime settings shared by the services

    Unknown keys in a settings file are ignored so older and newer
    files load without errors.
    """
    debug: bool = False
    log_level: str = "INFO"
    loop_duration_ms: int = LOOP_DURATION_MS
    default_audio_volume: float = DEFAULT_AUDIO_VOLUME
    fade_step_ms: int = FADE_STEP_MS
    local_default_kind: str = KIND_IDENTITY
    global_default_kind: str = KIND_OVERLAY

    @classmethod
    def from_dict(cls, data: dict) -> 'VisageSettings':
        known = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in (data or {}).items() if k in known})
        if os.environ.get("VISAGE_DEBUG", "") not in ("", "0"):
            settings.debug = True
        return settings

    def to_dict(self) -> dict:
        return asdict(self)

    def apply(self):
        """Push logging level and debug mode into the logging utilities"""
        set_debug_mode(self.debug)
        setup_logging(self.log_level)


def load_settings(path: Optional[str] = None) -> VisageSettings:
    """Load settings from a JSON file

    Args:
        path: Settings file path. Missing path or file yields defaults.

    Returns:
        VisageSettings instance
    """
    if not path or not os.path.exists(path):
        return VisageSettings.from_dict({})
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return VisageSettings.from_dict(json.load(f))
    except (OSError, ValueError) as e:
        loggerRaise(e, f"Error loading settings from {path}")


def save_settings(settings: VisageSettings, path: str):
    """Save settings to a JSON file, creating the directory if needed"""
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=2)
    except OSError as e:
        loggerRaise(e, f"Error saving settings to {path}")
