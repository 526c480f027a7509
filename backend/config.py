"""
Configuration for DriverSync.
Values come from the environment (and a local .env file) with sane defaults.
"""

from __future__ import annotations

import logging
import math
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from exceptions import ConfigurationError

# Load environment variables from .env file
load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseModel):
    """Runtime settings. ``default_deadline_hours`` is the company pickup window."""

    default_deadline_hours: float = 48.0
    debounce_seconds: float = 1.0          # quiet period after a change event
    poll_interval_seconds: float = 120.0   # fallback for missed push events
    list_tick_seconds: float = 60.0        # list urgency refresh
    countdown_tick_seconds: float = 1.0    # single live countdown refresh
    navigation_base_url: str = "https://www.google.com/maps/dir/"
    log_level: str = "INFO"
    seed_demo_tasks: bool = True

    @field_validator(
        "default_deadline_hours",
        "debounce_seconds",
        "poll_interval_seconds",
        "list_tick_seconds",
        "countdown_tick_seconds",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("must be a positive number")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "default_deadline_hours": os.getenv("DEFAULT_DEADLINE_HOURS"),
            "debounce_seconds": os.getenv("DEBOUNCE_SECONDS"),
            "poll_interval_seconds": os.getenv("POLL_INTERVAL_SECONDS"),
            "list_tick_seconds": os.getenv("LIST_TICK_SECONDS"),
            "countdown_tick_seconds": os.getenv("COUNTDOWN_TICK_SECONDS"),
            "navigation_base_url": os.getenv("NAVIGATION_BASE_URL"),
            "log_level": os.getenv("LOG_LEVEL"),
            "seed_demo_tasks": os.getenv("SEED_DEMO_TASKS"),
        }
        try:
            return cls(**{k: v for k, v in env.items() if v not in (None, "")})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging once at process start."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
