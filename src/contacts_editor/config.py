from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path

import phonenumbers

from .errors import ConfigurationError
from .normalize import NumberingPlan

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("local") / "contacts-editor.toml"

DEFAULT_CONF = """# contacts-editor local config (TOML)
region = "PT"
national_length = 9
leading_digits = "23789"
mobile_marker = "9"
mobile_second_digits = "123456"
contacts_file = "contacts.vcf"
workers = 1
"""


@dataclass
class Settings:
    region: str = "PT"
    country_code: str | None = None   # derived from region when unset
    national_length: int = 9
    leading_digits: str = "23789"
    mobile_marker: str = "9"
    mobile_second_digits: str = "123456"
    contacts_file: str = "contacts.vcf"
    workers: int = 1


def ensure_config(path: Path = DEFAULT_CONFIG_PATH) -> Path:
    """Create ``path`` with default settings if it does not exist yet."""
    path = Path(path)
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(DEFAULT_CONF, encoding="utf-8")
        logger.info("created default config at %s", path)
    return path


def load_settings(path: Path | None = None) -> Settings:
    settings = Settings()
    if path is None or not Path(path).exists():
        return settings

    try:
        data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("ignoring unreadable config %s: %s", path, exc)
        return settings

    for f in fields(Settings):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name in ("national_length", "workers"):
            try:
                value = int(value)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"{f.name} must be an integer, got {value!r}") from exc
        else:
            value = str(value)
        setattr(settings, f.name, value)
    return settings


def numbering_plan(settings: Settings) -> NumberingPlan:
    """Build the numbering plan described by ``settings``."""
    code = settings.country_code
    if not code:
        calling = phonenumbers.country_code_for_region(settings.region.upper())
        if not calling:
            raise ConfigurationError(f"unknown region {settings.region!r}")
        code = str(calling)

    if not code.isdigit():
        raise ConfigurationError(f"country_code must be digits, got {code!r}")
    if settings.national_length < 2:
        raise ConfigurationError("national_length must be at least 2")
    for name in ("leading_digits", "mobile_marker", "mobile_second_digits"):
        value = getattr(settings, name)
        if not value.isdigit():
            raise ConfigurationError(f"{name} must be digits, got {value!r}")
    if len(settings.mobile_marker) != 1:
        raise ConfigurationError("mobile_marker must be a single digit")

    return NumberingPlan(
        country_code=code,
        national_length=settings.national_length,
        leading_digits=settings.leading_digits,
        mobile_marker=settings.mobile_marker,
        mobile_second_digits=settings.mobile_second_digits,
    )
