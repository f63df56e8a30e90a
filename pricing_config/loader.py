"""
Configuration Loader (``pricing_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into a typed, validated
``EngineSettings``.  Services never call this directly; the runtime entry
point is ``pricing_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``engine`` section or invalid values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from pricing_config.schema import EngineSettings, JurisdictionMode, TimeWindowMode
from pricing_kernel.domain.rules import TierType
from pricing_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_int(raw: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(key, f"expected an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(key, f"must be at least {minimum}")
    return value


def _parse_enum(raw: dict[str, Any], key: str, enum_cls: type, default: Any) -> Any:
    value = raw.get(key, default.value)
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigurationError(key, f"{value!r} is not one of: {allowed}") from e


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse a loaded configuration document into ``EngineSettings``."""
    raw = data.get("engine")
    if not isinstance(raw, dict):
        raise ConfigurationError("engine", "missing 'engine' section")

    defaults = EngineSettings()
    internal_scale = _parse_int(raw, "internal_scale", defaults.internal_scale, 0)
    display_scale = _parse_int(raw, "display_scale", defaults.display_scale, 0)
    if display_scale > internal_scale:
        raise ConfigurationError(
            "display_scale", "must not exceed internal_scale"
        )

    raw_ceiling = raw.get("max_amount", str(defaults.max_amount))
    if isinstance(raw_ceiling, float):
        raise ConfigurationError("max_amount", "quote the amount so it is parsed exactly")
    try:
        max_amount = Decimal(str(raw_ceiling))
    except InvalidOperation as e:
        raise ConfigurationError("max_amount", f"not a number: {raw_ceiling!r}") from e
    if not max_amount.is_finite() or max_amount <= 0:
        raise ConfigurationError("max_amount", "must be a positive amount")

    return EngineSettings(
        internal_scale=internal_scale,
        display_scale=display_scale,
        max_amount=max_amount,
        time_window_mode=_parse_enum(
            raw, "time_window_mode", TimeWindowMode, defaults.time_window_mode
        ),
        jurisdiction_mode=_parse_enum(
            raw, "jurisdiction_mode", JurisdictionMode, defaults.jurisdiction_mode
        ),
        default_tier_type=_parse_enum(
            raw, "default_tier_type", TierType, defaults.default_tier_type
        ),
        bulk_max_workers=_parse_int(raw, "bulk_max_workers", defaults.bulk_max_workers, 1),
        config_id=str(data.get("config_id", "unnamed")),
        config_version=int(data.get("version", 1)),
        checksum=compute_checksum(raw),
    )


def load_engine_settings(path: Path) -> EngineSettings:
    return parse_engine_settings(load_yaml_file(path))
