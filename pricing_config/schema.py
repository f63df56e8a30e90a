"""
Engine settings schema.

The YAML configuration set is parsed into ``EngineSettings``, a frozen
dataclass the orchestrator holds for the duration of a call or batch.
Defaults reproduce ``sets/default.yaml`` so the engine is usable without
any file.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from pricing_kernel.domain.rules import TierType
from pricing_kernel.domain.values import DISPLAY_SCALE, INTERNAL_SCALE


class TimeWindowMode(str, Enum):
    LITERAL = "literal"
    WRAPAROUND = "wraparound"


class JurisdictionMode(str, Enum):
    ALL = "all"
    TOP = "top"


@dataclass(frozen=True)
class EngineSettings:
    internal_scale: int = INTERNAL_SCALE
    display_scale: int = DISPLAY_SCALE
    max_amount: Decimal = Decimal("1000000000000")
    time_window_mode: TimeWindowMode = TimeWindowMode.LITERAL
    jurisdiction_mode: JurisdictionMode = JurisdictionMode.ALL
    default_tier_type: TierType = TierType.SELLING
    bulk_max_workers: int = 1

    # Identity of the configuration set this came from
    config_id: str = "builtin"
    config_version: int = 1
    checksum: str = ""
