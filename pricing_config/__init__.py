"""
pricing_config -- single public entrypoint for engine settings.

Responsibility:
    Provides the ONLY way to obtain engine settings at runtime through
    ``get_active_config()``.  Engines never read files or environment
    variables; the orchestrator receives an ``EngineSettings`` value.

Failure modes:
    - ``FileNotFoundError`` -- the named configuration set does not exist.
    - ``ConfigurationError`` -- a setting failed validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PRICING_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each calculation batch to the settings that governed it.
"""

from __future__ import annotations

from pathlib import Path

from pricing_config.loader import load_engine_settings
from pricing_config.schema import EngineSettings, JurisdictionMode, TimeWindowMode
from pricing_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    set_name: str = "default",
    config_dir: Path | None = None,
) -> EngineSettings:
    """Load, validate and trace the named configuration set.

    Args:
        set_name: File stem of the configuration set (``<set_name>.yaml``).
        config_dir: Override path to the configuration sets directory.
            Defaults to pricing_config/sets/.

    Raises:
        FileNotFoundError: If the configuration set does not exist.
        ConfigurationError: If a setting is invalid.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{set_name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    settings = load_engine_settings(path)

    _logger.info(
        "PRICING_CONFIG_TRACE",
        extra={
            "trace_type": "PRICING_CONFIG_TRACE",
            "config_set_id": settings.config_id,
            "config_set_version": settings.config_version,
            "checksum": settings.checksum,
            "time_window_mode": settings.time_window_mode.value,
            "jurisdiction_mode": settings.jurisdiction_mode.value,
        },
    )
    return settings


__all__ = [
    "EngineSettings",
    "JurisdictionMode",
    "TimeWindowMode",
    "get_active_config",
]
