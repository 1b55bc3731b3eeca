"""
monitoring/config.py

Settings for a FallMonitor.

Values come from, in increasing priority:
    1. the dataclass defaults below
    2. a config.json with the user name and emergency contacts
       ({"user_name": ..., "contacts": [{"name", "phone", "is_primary", ...}]})
    3. FALL_* environment variables (a .env file is loaded first)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from response.emergency_alert import DEFAULT_CHANNEL_PRIORITY, AlertConfig, EmergencyContact

logger = logging.getLogger(__name__)

DEFAULT_CONTACTS_FILE = Path("config.json")


@dataclass
class MonitorConfig:
    user_name: str = "User"
    contacts: list[EmergencyContact] = field(default_factory=list)

    # Detection
    sensitivity_level: int = 3          # 1 (least) .. 5 (most sensitive)
    window_size: int = 50
    overlap: int = 25
    sample_rate_hz: float = 50.0
    evaluation_interval: float = 0.1    # seconds
    model_path: Path | None = None      # pickled scikit-learn pipeline; rules if None

    # False-alarm learning
    false_alarm_capacity: int = 100
    learning_rate: float = 0.1
    history_path: Path | None = None    # in-memory only if None

    # Emergency response
    countdown_seconds: int = 15
    location_timeout: float = 30.0
    location_sharing_enabled: bool = True
    whatsapp_enabled: bool = True
    sms_enabled: bool = True
    auto_call_enabled: bool = False
    channel_priority: tuple[str, ...] = DEFAULT_CHANNEL_PRIORITY
    home_latitude: float | None = None  # fixed fallback location
    home_longitude: float | None = None

    def validate(self) -> None:
        """Raise ValueError on settings the monitor cannot run with."""
        if self.sensitivity_level not in range(1, 6):
            raise ValueError(f"sensitivity_level must be 1-5, got {self.sensitivity_level}")
        if self.countdown_seconds < 1:
            raise ValueError(f"countdown_seconds must be at least 1, got {self.countdown_seconds}")
        if self.window_size < 2:
            raise ValueError(f"window_size must be at least 2, got {self.window_size}")
        if not 0 <= self.overlap < self.window_size:
            raise ValueError(f"overlap must be in [0, {self.window_size}), got {self.overlap}")
        if self.location_timeout <= 0:
            raise ValueError(f"location_timeout must be positive, got {self.location_timeout}")
        if not 0.0 < self.learning_rate <= 1.0:
            raise ValueError(f"learning_rate must be in (0, 1], got {self.learning_rate}")
        invalid = [c.name or c.phone for c in self.contacts if not c.is_valid()]
        if invalid:
            logger.warning("Contacts with missing name or phone: %s", ", ".join(invalid))

    def to_alert_config(self) -> AlertConfig:
        return AlertConfig(
            user_name                = self.user_name,
            contacts                 = [c for c in self.contacts if c.is_valid()],
            channel_priority         = self.channel_priority,
            whatsapp_enabled         = self.whatsapp_enabled,
            sms_enabled              = self.sms_enabled,
            auto_call_enabled        = self.auto_call_enabled,
            location_sharing_enabled = self.location_sharing_enabled,
        )


def load_contacts(path: Path) -> tuple[str | None, list[EmergencyContact]]:
    """
    Read a contacts file. Accepts either a bare list of contacts or the
    {"user_name": ..., "contacts": [...]} layout. Returns (user_name, contacts).
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    user_name = None
    if isinstance(data, dict):
        user_name = data.get("user_name")
        data = data.get("contacts", [])

    contacts = [
        EmergencyContact(
            name             = str(item.get("name", "")),
            phone            = str(item.get("phone", "")),
            is_primary       = bool(item.get("is_primary", False)),
            whatsapp_enabled = bool(item.get("whatsapp_enabled", True)),
            sms_enabled      = bool(item.get("sms_enabled", True)),
            relationship     = str(item.get("relationship", "")),
            contact_id       = str(item.get("id", "")),
        )
        for item in data
    ]
    return user_name, contacts


def load_config(dotenv_path: str | None = None, contacts_file: Path | None = None) -> MonitorConfig:
    """
    Build a MonitorConfig from config.json and the environment.
    Raises ValueError if the result does not validate.
    """
    load_dotenv(dotenv_path=dotenv_path)
    config = MonitorConfig()

    contacts_path = contacts_file or Path(os.environ.get("FALL_CONTACTS_FILE", DEFAULT_CONTACTS_FILE))
    if contacts_path.exists():
        try:
            user_name, contacts = load_contacts(contacts_path)
        except (OSError, ValueError, AttributeError, TypeError) as exc:
            raise ValueError(f"Could not read contacts from {contacts_path}: {exc}") from exc
        config.contacts = contacts
        if user_name:
            config.user_name = user_name
        logger.info("Loaded %d emergency contacts from %s", len(contacts), contacts_path)
    else:
        logger.warning("No contacts file at %s", contacts_path)

    config.user_name                = os.environ.get("FALL_USER_NAME", config.user_name)
    config.sensitivity_level        = _env_int("FALL_SENSITIVITY", config.sensitivity_level)
    config.countdown_seconds        = _env_int("FALL_COUNTDOWN_SECONDS", config.countdown_seconds)
    config.location_timeout         = _env_float("FALL_LOCATION_TIMEOUT", config.location_timeout)
    config.location_sharing_enabled = _env_bool("FALL_LOCATION_SHARING", config.location_sharing_enabled)
    config.whatsapp_enabled         = _env_bool("FALL_WHATSAPP_ENABLED", config.whatsapp_enabled)
    config.sms_enabled              = _env_bool("FALL_SMS_ENABLED", config.sms_enabled)
    config.auto_call_enabled        = _env_bool("FALL_AUTO_CALL", config.auto_call_enabled)
    config.learning_rate            = _env_float("FALL_LEARNING_RATE", config.learning_rate)
    config.model_path               = _env_path("FALL_MODEL_PATH", config.model_path)
    config.history_path             = _env_path("FALL_HISTORY_PATH", config.history_path)

    if os.environ.get("FALL_HOME_LAT") and os.environ.get("FALL_HOME_LON"):
        config.home_latitude  = _env_float("FALL_HOME_LAT", 0.0)
        config.home_longitude = _env_float("FALL_HOME_LON", 0.0)

    config.validate()
    return config


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------

def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str, default: Path | None) -> Path | None:
    raw = os.environ.get(name)
    return Path(raw) if raw else default
