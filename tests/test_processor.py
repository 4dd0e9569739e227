"""Tests for the lottery processor and processing-run ledger."""

import datetime as dt

import pytest
from sqlalchemy.orm import sessionmaker

from teelottery.domain.db import create_db_engine
from teelottery.domain.models import (
    Base,
    LotteryEntry,
    LotteryFill,
    LotteryProcessingRun,
    Member,
    MemberSpeedProfile,
    TimeBlock,
    TimeBlockMember,
    TimeRestriction,
)
from teelottery.domain.repositories import (
    BookingRepository,
    EntryLogRepository,
    FairnessScoreRepository,
    ProcessingRunRepository,
    TimeBlockRepository,
)
from teelottery.engine.processor import (
    LotteryProcessor,
    finalize_lottery_date,
    override_assignment,
    process_lottery_date,
    reprocess_lottery_date,
    unassigned_results,
)
from teelottery.errors import AssignmentError, DuplicateRunError, RunNotFoundError

NOW = dt.datetime(2025, 6, 13, 18, 0)


@pytest.fixture
def example_entries(db_session, members, three_blocks, make_entry):
    """A FAST foursome, an AVERAGE single with an alternate, and a single without one."""
    db_session.add(MemberSpeedProfile(member_id=1, speed_tier="FAST", average_minutes=225))
    db_session.add(MemberSpeedProfile(member_id=5, speed_tier="AVERAGE", average_minutes=240))
    db_session.commit()
    group = make_entry(1, preferred_window=0, member_ids=[2, 3, 4], submitted=dt.datetime(2025, 6, 11, 7, 0))
    single_alt = make_entry(5, preferred_window=0, alternate_window=1, submitted=dt.datetime(2025, 6, 11, 9, 0))
    single = make_entry(6, preferred_window=0, submitted=dt.datetime(2025, 6, 12, 9, 0))
    return group, single_alt, single


def _seats(session, block_id):
    return TimeBlockRepository.seats_used(session, [block_id])[block_id]


@pytest.mark.integration
def test_example_scenario(db_session, lottery_date, example_entries):
    group, single_alt, single = example_entries

    run = process_lottery_date(db_session, lottery_date, now=NOW)

    assert run.total_entries == 3
    assert run.assigned_count == 2
    assert run.group_count == 1
    assert run.individual_count == 2
    assert run.fairness_assigned_at == NOW
    assert run.canonical_date == lottery_date

    assert group.status == "ASSIGNED"
    assert group.assigned_time_block_id == 1
    assert single_alt.status == "ASSIGNED"
    assert single_alt.assigned_time_block_id == 2
    assert single.status == "PENDING"
    assert single.assigned_time_block_id is None

    assert _seats(db_session, 1) == 4
    assert _seats(db_session, 2) == 1

    logs = EntryLogRepository.get_by_run(db_session, run.id)
    assert [log.entry_id for log in logs] == [group.id, single_alt.id, single.id]
    assert [log.assignment_reason for log in logs] == ["PREFERRED_MATCH", "ALTERNATE_MATCH", "NO_SPACE"]
    assert logs[0].speed_component == 5
    assert logs[1].alternate_assigned is True

    unassigned = unassigned_results(db_session, run)
    assert [log.entry_id for log in unassigned] == [single.id]


@pytest.mark.integration
def test_fairness_updated_from_outcomes(db_session, lottery_date, example_entries):
    run = process_lottery_date(db_session, lottery_date, now=NOW)

    granted = FairnessScoreRepository.get(db_session, 5, "2025-06")
    assert granted.total_entries_month == 1
    assert granted.preferences_granted_month == 1
    assert granted.fairness_score == 0

    missed = FairnessScoreRepository.get(db_session, 6, "2025-06")
    assert missed.total_entries_month == 1
    assert missed.preferences_granted_month == 0
    assert missed.days_without_good_time == 1
    assert missed.fairness_score == 22

    log = EntryLogRepository.get_for_entry(db_session, run.id, example_entries[2].id)
    assert log.fairness_score_before == 0
    assert log.fairness_score_after == 22
    assert log.fairness_score_delta == 22
    assert log.preference_granted is False


@pytest.mark.integration
def test_processing_is_idempotent(db_session, lottery_date, example_entries):
    first = process_lottery_date(db_session, lottery_date, now=NOW)
    second = process_lottery_date(db_session, lottery_date, now=NOW)

    assert first.id == second.id
    assert len(ProcessingRunRepository.get_by_date(db_session, lottery_date)) == 1
    assert _seats(db_session, 1) == 4
    assert FairnessScoreRepository.get(db_session, 6, "2025-06").total_entries_month == 1


@pytest.mark.integration
def test_concurrent_run_raises_duplicate(db_session, lottery_date, example_entries, monkeypatch):
    process_lottery_date(db_session, lottery_date, now=NOW)

    original = ProcessingRunRepository.get_canonical
    calls = []

    def stale_get_canonical(session, day):
        calls.append(day)
        # The first lookup misses the committed run, as a racing process would.
        if len(calls) == 1:
            return None
        return original(session, day)

    monkeypatch.setattr(ProcessingRunRepository, "get_canonical", staticmethod(stale_get_canonical))

    with pytest.raises(DuplicateRunError):
        LotteryProcessor(db_session, now=NOW).process(lottery_date)

    monkeypatch.undo()
    assert db_session.query(LotteryProcessingRun).count() == 1
    assert _seats(db_session, 1) == 4


@pytest.mark.integration
def test_failing_entry_does_not_abort_run(db_session, lottery_date, example_entries, monkeypatch):
    group, single_alt, single = example_entries
    original = BookingRepository.book_entry

    def flaky_book_entry(session, entry, block):
        if entry.organizer_id == 1:
            raise RuntimeError("disk full")
        return original(session, entry, block)

    monkeypatch.setattr(BookingRepository, "book_entry", staticmethod(flaky_book_entry))

    run = process_lottery_date(db_session, lottery_date, now=NOW)

    assert group.status == "PENDING"
    assert single_alt.status == "ASSIGNED"
    assert single_alt.assigned_time_block_id == 1
    assert single.status == "ASSIGNED"
    assert run.assigned_count == 2

    log = EntryLogRepository.get_for_entry(db_session, run.id, group.id)
    assert log.assignment_reason == "ERROR"
    assert "disk full" in log.error_message
    assert log.fairness_score_after is None
    assert FairnessScoreRepository.get(db_session, 1, "2025-06") is None
    assert db_session.query(TimeBlockMember).filter_by(lottery_entry_id=group.id).count() == 0


@pytest.mark.integration
def test_existing_bookings_reduce_capacity(db_session, lottery_date, members, three_blocks, make_entry):
    for member_id in (7, 8, 9):
        db_session.add(
            TimeBlockMember(time_block_id=1, member_id=member_id, booking_date=lottery_date, booking_time="08:00")
        )
    db_session.commit()
    pair = make_entry(1, preferred_window=0, member_ids=[2])

    run = process_lottery_date(db_session, lottery_date, now=NOW)

    assert pair.status == "PENDING"
    assert run.assigned_count == 0
    assert _seats(db_session, 1) == 3


@pytest.mark.integration
def test_restricted_entry_logged_and_not_penalised(db_session, lottery_date, members, three_blocks, make_entry):
    db_session.add(
        TimeRestriction(
            name="Juniors after 9",
            restriction_category="MEMBER_CLASS",
            restriction_type="TIME",
            member_classes=["JUNIOR"],
            start_time="06:00",
            end_time="08:59",
            is_active=True,
        )
    )
    db_session.commit()
    junior = make_entry(11, preferred_window=0)

    run = process_lottery_date(db_session, lottery_date, now=NOW)

    assert junior.status == "PENDING"
    assert run.violation_count == 1
    log = EntryLogRepository.get_for_entry(db_session, run.id, junior.id)
    assert log.assignment_reason == "RESTRICTION"
    assert log.violated_restrictions is True
    assert log.restriction_details["reasons"]

    row = FairnessScoreRepository.get(db_session, 11, "2025-06")
    assert row.preferences_granted_month == 1
    assert row.fairness_score == 0


@pytest.mark.integration
def test_frequency_restriction_uses_booking_history(db_session, lottery_date, members, three_blocks, make_entry):
    earlier = TimeBlock(id=10, teesheet_date=lottery_date - dt.timedelta(days=2), start_time="08:00", max_members=4)
    db_session.add(earlier)
    db_session.add(
        TimeBlockMember(time_block_id=10, member_id=2, booking_date=earlier.teesheet_date, booking_time="08:00")
    )
    db_session.add(
        TimeRestriction(
            name="One round a week",
            restriction_category="MEMBER_CLASS",
            restriction_type="FREQUENCY",
            max_count=1,
            period_days=7,
            is_active=True,
        )
    )
    db_session.commit()
    regular = make_entry(2, preferred_window=0, alternate_window=1)
    fresh = make_entry(3, preferred_window=0)

    process_lottery_date(db_session, lottery_date, now=NOW)

    assert regular.status == "PENDING"
    assert fresh.status == "ASSIGNED"


@pytest.mark.integration
def test_guest_fill_restriction(db_session, lottery_date, members, three_blocks, make_entry):
    db_session.add(
        TimeRestriction(
            name="No guests before 9",
            restriction_category="GUEST",
            restriction_type="TIME",
            start_time="00:00",
            end_time="08:59",
            is_active=True,
        )
    )
    db_session.commit()
    with_guest = make_entry(1, preferred_window=0, alternate_window=1, fills=[LotteryFill(fill_type="guest")])

    process_lottery_date(db_session, lottery_date, now=NOW)

    assert with_guest.status == "ASSIGNED"
    assert with_guest.assigned_time_block_id == 2
    assert _seats(db_session, 2) == 2


@pytest.mark.integration
def test_reprocess_replays_without_double_counting(db_session, lottery_date, example_entries, make_entry):
    first = process_lottery_date(db_session, lottery_date, now=NOW)
    late = make_entry(7, preferred_window=1, submitted=dt.datetime(2025, 6, 13, 8, 0))

    second = reprocess_lottery_date(db_session, lottery_date, now=NOW + dt.timedelta(hours=1))

    db_session.refresh(first)
    assert second.id != first.id
    assert first.canonical_date is None
    assert first.superseded_by_run_id == second.id
    assert first.superseded_at is not None
    assert ProcessingRunRepository.get_canonical(db_session, lottery_date).id == second.id

    assert second.total_entries == 4
    assert late.status == "ASSIGNED"
    assert _seats(db_session, 1) == 4
    assert _seats(db_session, 2) == 2

    missed = FairnessScoreRepository.get(db_session, 6, "2025-06")
    assert missed.total_entries_month == 1
    assert missed.days_without_good_time == 1
    assert missed.fairness_score == 22


@pytest.mark.integration
def test_finalized_run_cannot_be_replayed(db_session, lottery_date, example_entries):
    process_lottery_date(db_session, lottery_date, now=NOW)
    run = finalize_lottery_date(db_session, lottery_date, now=NOW)

    assert run.finalized_at == NOW
    with pytest.raises(DuplicateRunError):
        reprocess_lottery_date(db_session, lottery_date, now=NOW)


def test_finalize_requires_run(db_session, lottery_date):
    with pytest.raises(RunNotFoundError):
        finalize_lottery_date(db_session, lottery_date)


@pytest.mark.integration
def test_override_moves_entry(db_session, lottery_date, example_entries):
    group, single_alt, single = example_entries
    run = process_lottery_date(db_session, lottery_date, now=NOW)

    override_assignment(db_session, single_alt.id, 3, admin_id=1)

    assert single_alt.assigned_time_block_id == 3
    assert _seats(db_session, 2) == 0
    assert _seats(db_session, 3) == 1
    log = EntryLogRepository.get_for_entry(db_session, run.id, single_alt.id)
    assert log.auto_assigned_start_time == "09:00"
    assert log.final_start_time == "10:00"


@pytest.mark.integration
def test_override_rejections(db_session, lottery_date, example_entries):
    group, single_alt, single = example_entries
    process_lottery_date(db_session, lottery_date, now=NOW)

    with pytest.raises(AssignmentError):
        override_assignment(db_session, single_alt.id, 1)  # full
    with pytest.raises(AssignmentError):
        override_assignment(db_session, single.id, 3)  # not assigned
    with pytest.raises(AssignmentError):
        override_assignment(db_session, single_alt.id, 999)


def _snapshot_db():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    day = dt.date(2025, 6, 14)
    session.add_all([Member(id=i, first_name=f"P{i}", last_name="T", member_class="REGULAR") for i in range(1, 21)])
    session.add_all(
        [TimeBlock(id=i, teesheet_date=day, start_time=t, max_members=4)
         for i, t in enumerate(["07:00", "07:10", "07:20", "07:30", "08:00", "08:30"], start=1)]
    )
    session.add_all(
        [MemberSpeedProfile(member_id=i, speed_tier=("FAST", "AVERAGE", "SLOW")[i % 3]) for i in range(1, 21)]
    )
    for i in range(1, 21, 2):
        session.add(
            LotteryEntry(
                organizer_id=i,
                member_ids=[i, i + 1] if i % 4 == 1 else [i],
                lottery_date=day,
                preferred_window=i % 2,
                alternate_window=1 - (i % 2),
                status="PENDING",
                submission_timestamp=dt.datetime(2025, 6, 11, 8, 0) + dt.timedelta(minutes=i % 5),
            )
        )
    session.commit()
    return session, day


@pytest.mark.integration
def test_processing_is_deterministic():
    outcomes = []
    for _ in range(2):
        session, day = _snapshot_db()
        run = process_lottery_date(session, day, now=NOW)
        outcomes.append(
            [(log.entry_id, log.rank, log.assignment_reason, log.final_time_block_id)
             for log in EntryLogRepository.get_by_run(session, run.id)]
        )
        session.close()

    assert outcomes[0] == outcomes[1]
