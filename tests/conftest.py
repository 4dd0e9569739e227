"""Pytest configuration and shared fixtures."""

import datetime as dt

import pytest
from sqlalchemy.orm import sessionmaker

from teelottery.domain.db import create_db_engine
from teelottery.domain.models import Base, LotteryEntry, Member, TimeBlock

LOTTERY_DATE = dt.date(2025, 6, 14)  # Saturday


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def db_session():
    """Create in-memory database session for testing."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def lottery_date():
    return LOTTERY_DATE


@pytest.fixture
def members(db_session):
    """Ten regular members plus a junior."""
    rows = [
        Member(id=i, first_name=f"Player{i}", last_name="Test", member_number=f"M{i:03d}", member_class="REGULAR")
        for i in range(1, 11)
    ]
    rows.append(Member(id=11, first_name="Jamie", last_name="Junior", member_number="J001", member_class="JUNIOR"))
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture
def three_blocks(db_session, lottery_date):
    """08:00, 09:00 and 10:00 tee times with four seats each."""
    blocks = [
        TimeBlock(id=1, teesheet_date=lottery_date, start_time="08:00", max_members=4),
        TimeBlock(id=2, teesheet_date=lottery_date, start_time="09:00", max_members=4),
        TimeBlock(id=3, teesheet_date=lottery_date, start_time="10:00", max_members=4),
    ]
    db_session.add_all(blocks)
    db_session.commit()
    return blocks


@pytest.fixture
def make_entry(db_session, lottery_date):
    """Factory adding a PENDING entry."""

    def _make(organizer_id, preferred_window=0, alternate_window=None, member_ids=None,
              submitted=None, requested_time=None, fills=None, entry_date=None):
        entry = LotteryEntry(
            organizer_id=organizer_id,
            member_ids=[organizer_id] + list(member_ids or []),
            lottery_date=entry_date or lottery_date,
            preferred_window=preferred_window,
            alternate_window=alternate_window,
            requested_time=requested_time,
            status="PENDING",
            submission_timestamp=submitted or dt.datetime(2025, 6, 11, 9, 0),
        )
        for fill in fills or []:
            entry.fills.append(fill)
        db_session.add(entry)
        db_session.commit()
        return entry

    return _make
