"""Configuration for the lottery engine.

Two layers:
- LotteryConfig: deployment settings loaded from a YAML (or JSON) file.
- AlgorithmConfig: the club-tunable scoring parameters, normally read from the
  singleton ``lottery_algorithm_config`` row and falling back to
  DEFAULT_ALGORITHM_CONFIG when no row exists.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

POSITIONS = ("early", "mid_early", "mid_late", "late")
SPEED_TIERS = ("FAST", "AVERAGE", "SLOW")

MAX_SPEED_BONUS = 50


@dataclass
class LotteryConfig:
    """Deployment settings for a club."""

    database_url: str = "sqlite:///lottery.db"
    max_window_duration_minutes: int = 60
    lottery_advance_days: int = 3
    lottery_max_days_ahead: int = 60
    speed_history_months: int = 3
    min_qualifying_rounds: int = 3
    min_round_minutes: int = 180
    max_round_minutes: int = 360
    log_level: str = "INFO"

    def validate(self) -> None:
        if self.max_window_duration_minutes <= 0:
            raise ConfigurationError("max_window_duration_minutes must be positive")
        if self.lottery_advance_days < 0:
            raise ConfigurationError("lottery_advance_days must be >= 0")
        if self.lottery_max_days_ahead < 1:
            raise ConfigurationError("lottery_max_days_ahead must be >= 1")
        if self.speed_history_months < 1:
            raise ConfigurationError("speed_history_months must be >= 1")
        if self.min_qualifying_rounds < 1:
            raise ConfigurationError("min_qualifying_rounds must be >= 1")
        if self.min_round_minutes >= self.max_round_minutes:
            raise ConfigurationError("min_round_minutes must be below max_round_minutes")


def _default_speed_bonuses() -> Dict[str, Dict[str, float]]:
    # Fast players are pulled toward the early windows, slow players toward the late ones.
    return {
        "early": {"FAST": 5, "AVERAGE": 2, "SLOW": 0},
        "mid_early": {"FAST": 2, "AVERAGE": 1, "SLOW": 0},
        "mid_late": {"FAST": 0, "AVERAGE": 0, "SLOW": 1},
        "late": {"FAST": 0, "AVERAGE": 0, "SLOW": 2},
    }


@dataclass
class AlgorithmConfig:
    """Scoring parameters for the priority scorer and speed classification."""

    fast_threshold_minutes: int = 235
    average_threshold_minutes: int = 245
    speed_bonuses: Dict[str, Dict[str, float]] = field(default_factory=_default_speed_bonuses)
    fairness_weighting: float = 1.0
    max_submission_bonus: float = 5.0
    admin_adjustment_bound: int = 25
    enable_speed_priority: bool = True
    enable_fairness_system: bool = True
    monthly_reset_enabled: bool = True

    def speed_bonus(self, position: str, tier: str) -> float:
        return float(self.speed_bonuses.get(position, {}).get(tier, 0))

    def classify(self, average_minutes: float) -> str:
        """Map an average round duration to a speed tier."""
        if average_minutes <= self.fast_threshold_minutes:
            return "FAST"
        if average_minutes <= self.average_threshold_minutes:
            return "AVERAGE"
        return "SLOW"

    def validate(self) -> None:
        for name in ("fast_threshold_minutes", "average_threshold_minutes"):
            value = getattr(self, name)
            if not 1 <= value <= 600:
                raise ConfigurationError(f"{name} must be between 1 and 600, got {value}")
        if self.fast_threshold_minutes >= self.average_threshold_minutes:
            raise ConfigurationError("Fast threshold must be less than average threshold")
        for position, tiers in self.speed_bonuses.items():
            if position not in POSITIONS:
                raise ConfigurationError(f"Unknown window position in speed bonuses: {position}")
            for tier, bonus in tiers.items():
                if tier not in SPEED_TIERS:
                    raise ConfigurationError(f"Unknown speed tier in speed bonuses: {tier}")
                if not 0 <= bonus <= MAX_SPEED_BONUS:
                    raise ConfigurationError(
                        f"Speed bonus for {position}/{tier} must be between 0 and {MAX_SPEED_BONUS}"
                    )
        if self.fairness_weighting < 0:
            raise ConfigurationError("fairness_weighting must be >= 0")
        if self.max_submission_bonus < 0:
            raise ConfigurationError("max_submission_bonus must be >= 0")
        if self.admin_adjustment_bound < 0:
            raise ConfigurationError("admin_adjustment_bound must be >= 0")

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["speed_bonuses"] = copy.deepcopy(self.speed_bonuses)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlgorithmConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}
        if "speed_bonuses" in kwargs:
            kwargs["speed_bonuses"] = normalize_speed_bonuses(kwargs["speed_bonuses"])
        cfg = cls(**kwargs)
        cfg.validate()
        return cfg


DEFAULT_ALGORITHM_CONFIG = AlgorithmConfig()


def normalize_speed_bonuses(raw: Any) -> Dict[str, Dict[str, float]]:
    """
    Accept either the nested mapping form or the row list form
    ``[{"position": "early", "fast_bonus": 5, "average_bonus": 2, "slow_bonus": 0}, ...]``.
    Positions missing from the input keep their default bonuses.
    """
    table = _default_speed_bonuses()
    if isinstance(raw, Mapping):
        for position, tiers in raw.items():
            table.setdefault(position, {})
            for tier, bonus in dict(tiers).items():
                table[position][str(tier).upper()] = bonus
        return table
    if isinstance(raw, list):
        for row in raw:
            position = row.get("position") or row.get("window")
            if position is None:
                raise ConfigurationError(f"Speed bonus row has no position: {row}")
            table[position] = {
                "FAST": row.get("fast_bonus", 0),
                "AVERAGE": row.get("average_bonus", 0),
                "SLOW": row.get("slow_bonus", 0),
            }
        return table
    raise ConfigurationError(f"Unsupported speed bonus format: {type(raw).__name__}")


def speed_bonuses_to_rows(table: Mapping[str, Mapping[str, float]]) -> list:
    return [
        {
            "position": position,
            "fast_bonus": table.get(position, {}).get("FAST", 0),
            "average_bonus": table.get(position, {}).get("AVERAGE", 0),
            "slow_bonus": table.get(position, {}).get("SLOW", 0),
        }
        for position in POSITIONS
    ]


def load_config(path: str | Path | None = None) -> LotteryConfig:
    """
    Load deployment settings from a YAML or JSON file.

    Args:
        path: Config file path. None returns the defaults.

    Returns:
        Validated LotteryConfig

    Raises:
        ConfigurationError: If the file cannot be parsed or holds invalid values
    """
    if path is None:
        return LotteryConfig()

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e

    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(LotteryConfig)}
    for key in sorted(set(raw) - known):
        logger.warning("Ignoring unknown config key %r in %s", key, path)

    cfg = LotteryConfig(**{k: v for k, v in raw.items() if k in known})
    cfg.validate()
    return cfg
