"""Read and write the singleton algorithm configuration row."""

from __future__ import annotations

import copy
import logging
from typing import Optional

from sqlalchemy.orm import Session

from teelottery.config import DEFAULT_ALGORITHM_CONFIG, AlgorithmConfig
from teelottery.domain.repositories import AlgorithmConfigRepository
from teelottery.errors import ConfigurationError

logger = logging.getLogger(__name__)

_COLUMNS = (
    "fast_threshold_minutes",
    "average_threshold_minutes",
    "speed_bonuses",
    "fairness_weighting",
    "max_submission_bonus",
    "admin_adjustment_bound",
    "enable_speed_priority",
    "enable_fairness_system",
    "monthly_reset_enabled",
)


def load_algorithm_config(session: Session) -> AlgorithmConfig:
    """
    Current algorithm configuration.

    A missing row, or a stored row that no longer validates, yields the
    built-in defaults.
    """
    row = AlgorithmConfigRepository.get(session)
    if row is None:
        return copy.deepcopy(DEFAULT_ALGORITHM_CONFIG)
    try:
        return AlgorithmConfig.from_dict({name: getattr(row, name) for name in _COLUMNS})
    except ConfigurationError as e:
        logger.warning("Stored algorithm config is invalid (%s); using defaults", e)
        return copy.deepcopy(DEFAULT_ALGORITHM_CONFIG)


def save_algorithm_config(
    session: Session, config: AlgorithmConfig, updated_by: Optional[str] = None
) -> AlgorithmConfig:
    """
    Validate and persist the configuration.

    Raises:
        ConfigurationError: If the values are invalid; nothing is written
    """
    config.validate()
    values = config.to_dict()
    AlgorithmConfigRepository.upsert(session, {name: values[name] for name in _COLUMNS}, updated_by=updated_by)
    session.commit()
    logger.info("Algorithm config saved by %s", updated_by or "system")
    return config
