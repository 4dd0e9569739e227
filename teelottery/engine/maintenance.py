"""Monthly maintenance: fairness reset and speed recalculation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from teelottery.config import AlgorithmConfig, LotteryConfig
from teelottery.domain.models import MemberFairnessScore, utcnow
from teelottery.domain.repositories import FairnessScoreRepository, MaintenanceRepository, MemberRepository
from teelottery.services.algorithm_config import load_algorithm_config
from teelottery.services.fairness import month_key
from teelottery.services.speed import recalculate_speed_profiles, reclassify_all_speed_tiers

logger = logging.getLogger(__name__)

MONTHLY_RESET = "MONTHLY_RESET"
SPEED_RECALCULATION = "SPEED_RECALCULATION"
MANUAL_MAINTENANCE = "MANUAL_MAINTENANCE"


class MaintenanceState(str, Enum):
    IDLE = "IDLE"
    CHECKING = "CHECKING"
    RUNNING = "RUNNING"
    RECORDED = "RECORDED"


@dataclass
class MaintenanceStepResult:
    maintenance_type: str
    success: bool = True
    records_affected: int = 0
    skipped: bool = False
    recorded: bool = False
    error: Optional[str] = None


@dataclass
class MaintenanceResult:
    month: str
    fairness_rows_created: int = 0
    profiles_updated: int = 0
    steps: List[MaintenanceStepResult] = field(default_factory=list)
    noop: bool = True

    @property
    def success(self) -> bool:
        return all(step.success for step in self.steps)

    @property
    def errors(self) -> List[str]:
        return [f"{s.maintenance_type}: {s.error}" for s in self.steps if not s.success]


def reset_monthly_fairness(session: Session, month: str) -> int:
    """
    Start a new fairness month with a zero row per member.

    No-op when any row already exists for the month.

    Returns:
        Number of rows created
    """
    if FairnessScoreRepository.month_exists(session, month):
        logger.info("Fairness rows for %s already exist", month)
        return 0

    now = utcnow()
    rows = [
        MemberFairnessScore(
            member_id=member_id,
            current_month=month,
            total_entries_month=0,
            preferences_granted_month=0,
            preference_fulfillment_rate=0.0,
            days_without_good_time=0,
            fairness_score=0,
            last_updated=now,
        )
        for member_id in MemberRepository.all_ids(session)
    ]
    session.add_all(rows)
    session.flush()
    logger.info("Created %d fairness rows for %s", len(rows), month)
    return len(rows)


class MaintenanceScheduler:
    """
    Runs the monthly maintenance steps at most once per month.

    IDLE -> CHECKING -> RUNNING -> RECORDED. ``check_and_run`` is meant to be
    called whenever the lottery is accessed; ``run(force=True)`` is the admin
    trigger. Each step runs in its own savepoint so a failing step does not
    undo the others.
    """

    def __init__(
        self,
        session: Session,
        settings: Optional[LotteryConfig] = None,
        algorithm_config: Optional[AlgorithmConfig] = None,
        now: Optional[datetime] = None,
    ):
        self.session = session
        self.settings = settings or LotteryConfig()
        self.algorithm_config = algorithm_config
        self.now = now
        self.state = MaintenanceState.IDLE

    @property
    def month(self) -> str:
        return month_key(self.now or utcnow())

    def is_due(self) -> bool:
        month = self.month
        return not (
            MaintenanceRepository.exists(self.session, MONTHLY_RESET, month)
            and MaintenanceRepository.exists(self.session, SPEED_RECALCULATION, month)
        )

    def check_and_run(self) -> MaintenanceResult:
        self.state = MaintenanceState.CHECKING
        if not self.is_due():
            logger.debug("Maintenance for %s already recorded", self.month)
            self.state = MaintenanceState.IDLE
            return MaintenanceResult(month=self.month, noop=True)
        return self.run()

    def run(self, force: bool = False) -> MaintenanceResult:
        """
        Run every step that has not been recorded for the month.

        Args:
            force: Run steps even if already recorded, and write a
                MANUAL_MAINTENANCE ledger row

        Returns:
            MaintenanceResult with per-step outcomes
        """
        self.state = MaintenanceState.RUNNING
        month = self.month
        config = self.algorithm_config or load_algorithm_config(self.session)
        result = MaintenanceResult(month=month)

        reset = self._run_step(
            MONTHLY_RESET,
            month,
            force,
            lambda: reset_monthly_fairness(self.session, month),
            enabled=config.monthly_reset_enabled,
        )
        result.steps.append(reset)
        if reset.success and not reset.skipped:
            result.fairness_rows_created = reset.records_affected

        speed = self._run_step(
            SPEED_RECALCULATION,
            month,
            force,
            lambda: recalculate_speed_profiles(self.session, config, self.settings, self.now),
        )
        result.steps.append(speed)
        if speed.success and not speed.skipped:
            result.profiles_updated = speed.records_affected

        if force:
            total = result.fairness_rows_created + result.profiles_updated
            manual = MaintenanceStepResult(maintenance_type=MANUAL_MAINTENANCE, records_affected=total)
            manual.recorded = MaintenanceRepository.record(
                self.session, MANUAL_MAINTENANCE, month, total, notes="Manual maintenance"
            )
            result.steps.append(manual)

        self.session.commit()

        result.noop = (
            result.fairness_rows_created == 0
            and result.profiles_updated == 0
            and not any(step.recorded for step in result.steps)
        )
        self.state = MaintenanceState.RECORDED
        for error in result.errors:
            logger.error("Maintenance step failed: %s", error)
        logger.info(
            "Maintenance %s: %d fairness rows, %d speed profiles%s",
            month,
            result.fairness_rows_created,
            result.profiles_updated,
            " (no-op)" if result.noop else "",
        )
        return result

    def _run_step(
        self,
        maintenance_type: str,
        month: str,
        force: bool,
        action: Callable[[], int],
        enabled: bool = True,
    ) -> MaintenanceStepResult:
        step = MaintenanceStepResult(maintenance_type=maintenance_type)
        if not enabled or (not force and MaintenanceRepository.exists(self.session, maintenance_type, month)):
            step.skipped = True
            return step
        try:
            with self.session.begin_nested():
                step.records_affected = action()
        except Exception as e:
            logger.exception("Maintenance step %s failed", maintenance_type)
            step.success = False
            step.error = str(e)
            return step
        step.recorded = MaintenanceRepository.record(
            self.session, maintenance_type, month, step.records_affected
        )
        return step

    def reclassify(self) -> int:
        """Re-apply current thresholds to every speed profile."""
        config = self.algorithm_config or load_algorithm_config(self.session)
        updated = reclassify_all_speed_tiers(self.session, config)
        self.session.commit()
        return updated


def run_maintenance(
    session: Session,
    settings: Optional[LotteryConfig] = None,
    force: bool = False,
    now: Optional[datetime] = None,
) -> MaintenanceResult:
    """Check-on-access entry point; ``force`` runs the admin-triggered variant."""
    scheduler = MaintenanceScheduler(session, settings=settings, now=now)
    if force:
        return scheduler.run(force=True)
    return scheduler.check_and_run()
