"""Tests for the greedy assignment solver."""

import datetime as dt
import random

import pytest

from teelottery.domain.models import LotteryEntry, LotteryFill, TimeBlock, TimeRestriction
from teelottery.engine.solver import BlockSlot, Candidate, GreedySolver
from teelottery.services.restrictions import RestrictionChecker
from teelottery.services.scoring import LotteryPriorityCalculation
from teelottery.services.timewindows import compute_time_windows

DAY = dt.date(2025, 6, 14)
BASE_TS = dt.datetime(2025, 6, 11, 8, 0)


def _blocks(*times, capacity=4):
    return [
        TimeBlock(id=i, teesheet_date=DAY, start_time=t, max_members=capacity)
        for i, t in enumerate(times, start=1)
    ]


def _candidate(entry_id, score, preferred=0, alternate=None, members=None, minutes=0,
               organizer_id=None, requested_time=None, fills=None):
    organizer_id = organizer_id or entry_id
    entry = LotteryEntry(
        id=entry_id,
        organizer_id=organizer_id,
        member_ids=[organizer_id] + list(members or []),
        lottery_date=DAY,
        preferred_window=preferred,
        alternate_window=alternate,
        requested_time=requested_time,
        status="PROCESSING",
        submission_timestamp=BASE_TS + dt.timedelta(minutes=minutes),
    )
    entry.fills = list(fills or [])
    priority = LotteryPriorityCalculation(
        member_id=organizer_id,
        entry_id=entry_id,
        total_score=score,
        fairness_score=0,
        speed_bonus=0,
        admin_adjustment=0,
        submission_bonus=0,
    )
    return Candidate(entry=entry, priority=priority)


def _checker(restrictions=(), member_classes=None):
    return RestrictionChecker(DAY, list(restrictions), member_classes or {})


def _solve(candidates, blocks, windows=None, checker=None, on_assign=None):
    if windows is None:
        windows = compute_time_windows([b.start_time for b in blocks], 60)
    slots = BlockSlot.from_blocks(blocks)
    results = GreedySolver().solve(candidates, slots, windows, checker or _checker(), on_assign=on_assign)
    return results, slots


def test_three_block_example():
    """Higher score wins the early block; the next entry falls to its alternate or gets NO_SPACE."""
    blocks = _blocks("08:00", "09:00", "10:00")
    fast_group = _candidate(1, 7.0, preferred=0, members=[2, 3, 4], minutes=0)
    average_alt = _candidate(5, 4.0, preferred=0, alternate=1, minutes=5)
    average_no_alt = _candidate(6, 3.0, preferred=0, minutes=10)

    results, slots = _solve([average_no_alt, average_alt, fast_group], blocks)
    by_id = {r.entry_id: r for r in results}

    assert [r.entry_id for r in results] == [1, 5, 6]
    assert by_id[1].reason == "PREFERRED_MATCH"
    assert by_id[1].start_time == "08:00"
    assert by_id[5].reason == "ALTERNATE_MATCH"
    assert by_id[5].alternate_assigned is True
    assert by_id[5].preference_matched is False
    assert by_id[5].start_time == "09:00"
    assert by_id[6].reason == "NO_SPACE"
    assert by_id[6].time_block_id is None
    assert slots[0].remaining == 0


def test_group_seated_atomically():
    blocks = _blocks("08:00", "08:10", "08:20", "09:00")
    blocks[0].max_members = 2
    group = _candidate(1, 5.0, members=[2, 3])

    results, slots = _solve([group], blocks)

    assert results[0].assigned
    assert results[0].start_time == "08:10"
    assert results[0].seats == 3
    assert slots[0].remaining == 2
    assert slots[1].remaining == 1


def test_fills_take_seats():
    blocks = _blocks("08:00", "09:00")
    group = _candidate(1, 5.0, fills=[LotteryFill(fill_type="guest"), LotteryFill(fill_type="custom", custom_name="Pat")])
    single = _candidate(2, 4.0, members=[3, 4])

    results, slots = _solve([group, single], blocks)
    by_id = {r.entry_id: r for r in results}

    assert by_id[1].seats == 3
    assert by_id[1].start_time == "08:00"
    assert by_id[2].start_time == "09:00"
    assert slots[0].remaining == 1


def test_capacity_never_exceeded():
    rng = random.Random(42)
    blocks = _blocks("07:00", "07:10", "07:20", "07:30", "07:40", "07:50", "08:00", "08:10", "08:20")
    windows = compute_time_windows([b.start_time for b in blocks], 30)
    candidates = [
        _candidate(
            i,
            rng.uniform(0, 30),
            preferred=rng.randrange(len(windows)),
            alternate=rng.randrange(len(windows)),
            members=list(range(1000 + i * 10, 1000 + i * 10 + rng.randrange(4))),
            minutes=rng.randrange(600),
        )
        for i in range(1, 40)
    ]

    results, slots = _solve(candidates, blocks, windows=windows)

    seated = {}
    for r in results:
        if r.assigned:
            seated[r.time_block_id] = seated.get(r.time_block_id, 0) + r.seats
    for block in blocks:
        assert seated.get(block.id, 0) <= block.max_members
    for slot in slots:
        assert slot.remaining >= 0


def test_deterministic_regardless_of_input_order():
    blocks = _blocks("08:00", "09:00", "10:00")

    def build():
        return [
            _candidate(1, 5.0, preferred=0, alternate=1, members=[11]),
            _candidate(2, 5.0, preferred=0, alternate=1, members=[12, 13]),
            _candidate(3, 9.0, preferred=1, members=[14]),
            _candidate(4, 1.0, preferred=0, alternate=1),
            _candidate(5, 5.0, preferred=1, minutes=-5),
        ]

    first, _ = _solve(build(), blocks)
    shuffled = build()
    random.Random(7).shuffle(shuffled)
    second, _ = _solve(shuffled, _blocks("08:00", "09:00", "10:00"))

    assert [(r.entry_id, r.reason, r.time_block_id) for r in first] == [
        (r.entry_id, r.reason, r.time_block_id) for r in second
    ]


def test_tie_break_by_submission_then_organizer():
    blocks = _blocks("08:00", "09:00")
    late = _candidate(1, 5.0, minutes=30)
    early_high_id = _candidate(2, 5.0, minutes=0, organizer_id=9)
    early_low_id = _candidate(3, 5.0, minutes=0, organizer_id=8)

    results, _ = _solve([late, early_high_id, early_low_id], blocks)

    assert [r.entry_id for r in results] == [3, 2, 1]
    assert [r.rank for r in results] == [1, 2, 3]


def test_restricted_window_falls_back_to_alternate():
    blocks = _blocks("08:00", "09:00", "10:00")
    no_juniors_early = TimeRestriction(
        id=7,
        name="No juniors before 9",
        restriction_category="MEMBER_CLASS",
        restriction_type="TIME",
        member_classes=["JUNIOR"],
        start_time="07:00",
        end_time="08:59",
        is_active=True,
    )
    checker = _checker([no_juniors_early], {21: "JUNIOR", 22: "JUNIOR"})

    results, _ = _solve(
        [_candidate(21, 5.0, preferred=0), _candidate(22, 4.0, preferred=0, alternate=1)],
        blocks,
        checker=checker,
    )
    by_id = {r.entry_id: r for r in results}

    assert by_id[21].reason == "RESTRICTION"
    assert by_id[21].restriction_ids == [7]
    assert by_id[21].restriction_reasons
    assert by_id[22].reason == "ALTERNATE_MATCH"
    assert by_id[22].start_time == "09:00"


def test_restricted_preferred_and_full_alternate_is_restriction():
    blocks = _blocks("08:00", "09:00", "10:00")
    no_juniors_early = TimeRestriction(
        id=7, name="No juniors before 9", restriction_category="MEMBER_CLASS", restriction_type="TIME",
        member_classes=["JUNIOR"], start_time="07:00", end_time="08:59", is_active=True,
    )
    checker = _checker([no_juniors_early], {21: "JUNIOR"})
    fillers = [
        _candidate(1, 10.0, preferred=1, members=[2, 3, 4]),
        _candidate(5, 9.0, preferred=1, members=[6, 7, 8]),
    ]

    results, slots = _solve(fillers + [_candidate(21, 1.0, preferred=0, alternate=1)], blocks, checker=checker)
    junior = results[-1]

    assert [s.remaining for s in slots] == [4, 0, 0]
    assert junior.reason == "RESTRICTION"
    assert junior.restriction_ids == [7]
    assert junior.time_block_id is None


def test_full_window_is_no_space_not_restriction():
    blocks = _blocks("08:00", "09:00", "10:00")
    restriction = TimeRestriction(
        id=3, name="Juniors", restriction_category="MEMBER_CLASS", restriction_type="TIME",
        member_classes=["JUNIOR"], start_time="08:00", end_time="08:00", is_active=True,
    )
    checker = _checker([restriction], {5: "JUNIOR"})
    filler = _candidate(1, 10.0, members=[2, 3, 4])

    results, _ = _solve([filler, _candidate(5, 1.0)], blocks, checker=checker)

    assert results[1].reason == "NO_SPACE"


def test_failing_assign_hook_isolated_to_entry():
    blocks = _blocks("08:00", "09:00")
    calls = []

    def on_assign(entry, block, result):
        calls.append(entry.id)
        if entry.id == 1:
            raise RuntimeError("database went away")

    results, slots = _solve(
        [_candidate(1, 9.0, members=[2, 3, 4]), _candidate(5, 5.0, members=[6, 7, 8])],
        blocks,
        on_assign=on_assign,
    )
    by_id = {r.entry_id: r for r in results}

    assert calls == [1, 5]
    assert by_id[1].reason == "ERROR"
    assert "database went away" in by_id[1].error_message
    assert by_id[1].time_block_id is None
    assert by_id[5].reason == "PREFERRED_MATCH"
    assert by_id[5].start_time == "08:00"
    assert slots[0].remaining == 0


def test_unknown_window_is_error():
    blocks = _blocks("08:00", "09:00", "10:00")
    results, _ = _solve([_candidate(1, 5.0, preferred=7)], blocks)

    assert results[0].reason == "ERROR"
    assert results[0].error_message


def test_requested_time_tried_first():
    blocks = _blocks("08:00", "08:10", "08:20", "08:30", "09:00")
    windows = compute_time_windows([b.start_time for b in blocks], 60)

    results, _ = _solve([_candidate(1, 5.0, requested_time="08:20")], blocks, windows=windows)

    assert results[0].start_time == "08:20"
    assert results[0].specific_time_matched is True
    assert results[0].preference_matched is True


def test_requested_time_matched_by_clock_time():
    blocks = _blocks("08:00", "08:10", "08:20", "08:30", "09:00")
    windows = compute_time_windows([b.start_time for b in blocks], 60)

    results, _ = _solve([_candidate(1, 5.0, requested_time="8:20:00")], blocks, windows=windows)

    assert results[0].start_time == "08:20"
    assert results[0].specific_time_matched is True


def test_requested_time_full_uses_earliest_other_block():
    blocks = _blocks("08:00", "08:10", "08:20", "09:00")
    blocks[2].max_members = 1

    results, _ = _solve([_candidate(1, 5.0, requested_time="08:20", members=[2])], blocks)

    assert results[0].start_time == "08:00"
    assert results[0].specific_time_matched is False


def test_day_without_windows_accepts_any_window():
    blocks = _blocks("08:00")
    results, _ = _solve([_candidate(1, 5.0, preferred=2)], blocks, windows=[])

    assert results[0].reason == "PREFERRED_MATCH"
    assert results[0].time_block_id == 1
