from datetime import datetime, timedelta

import pytest
import pytz
from sqlalchemy import text

from sitecrew.models.models import Attendance, Project, SINGLE_ACTIVE_TASK_INDEX
from sitecrew.services.maintenance import (
    MaintenanceError,
    ensure_single_active_index,
    find_multiple_in_progress,
    find_unnormalized_attendance,
    geofence_report,
    has_single_active_index,
    repair_attendance_dates,
    repair_multiple_in_progress,
)
from sitecrew.services.time_rules import ensure_utc

from conftest import SITE_LAT, SITE_LNG

UTC = pytz.UTC
T0 = datetime(2024, 3, 11, 4, 0, tzinfo=UTC)


@pytest.fixture
def worker(factory):
    return factory.employee(factory.user("worker1"))


@pytest.fixture
def project(factory):
    return factory.project()


@pytest.fixture
def without_index(db, engine):
    db.execute(text(f"DROP INDEX {SINGLE_ACTIVE_TASK_INDEX}"))
    db.commit()
    assert not has_single_active_index(engine)


def test_index_created_with_schema(engine):
    assert has_single_active_index(engine)
    assert ensure_single_active_index(engine) is False


def test_repair_multiple_in_progress(db, engine, factory, worker, project, without_index):
    older = factory.assignment(worker, project, status="in_progress", sequence=1, start_time=T0)
    newer = factory.assignment(worker, project, status="in_progress", sequence=2, start_time=T0 + timedelta(hours=1))
    oldest = factory.assignment(worker, project, status="in_progress", sequence=3, start_time=T0 - timedelta(hours=1))

    conflicts = find_multiple_in_progress(db)
    assert [a.id for a in conflicts[worker.id]] == [newer.id, older.id, oldest.id]

    with pytest.raises(MaintenanceError):
        ensure_single_active_index(engine)

    report = repair_multiple_in_progress(db, apply=False)
    db.rollback()
    assert report == [{"employee_id": str(worker.id), "kept": str(newer.id), "paused": [str(older.id), str(oldest.id)]}]
    db.refresh(older)
    assert older.status == "in_progress"

    repair_multiple_in_progress(db, apply=True, now=T0 + timedelta(hours=2))
    db.commit()
    for assignment in (older, oldest):
        db.refresh(assignment)
        assert assignment.status == "paused"
        assert assignment.pause_history[-1]["resumedAt"] is None
    db.refresh(newer)
    assert newer.status == "in_progress"
    assert find_multiple_in_progress(db) == {}

    assert ensure_single_active_index(engine) is True
    assert has_single_active_index(engine)


def test_repair_ignores_single_active_task(db, factory, worker, project):
    factory.assignment(worker, project, status="in_progress", sequence=1)
    factory.assignment(worker, project, status="paused", sequence=2)
    assert repair_multiple_in_progress(db, apply=True) == []


def _attendance(db, worker, project, day, check_in=None, check_out=None, created=T0):
    row = Attendance(
        employee_id=worker.id,
        project_id=project.id,
        date=day,
        check_in=check_in,
        check_out=check_out,
        pending_checkout=bool(check_in and not check_out),
        created_at=created,
    )
    db.add(row)
    db.commit()
    return row


def test_repair_attendance_dates(db, worker, project):
    # Local midnight stored instead of UTC midnight (18:30 UTC is 00:00 IST)
    shifted = _attendance(
        db, worker, project,
        day=datetime(2024, 3, 11, 18, 30, tzinfo=UTC),
        check_in=datetime(2024, 3, 12, 3, 30, tzinfo=UTC),
        created=T0,
    )
    # Same local day as an already normalized row: must be merged
    normalized = _attendance(
        db, worker, project,
        day=datetime(2024, 3, 10, tzinfo=UTC),
        check_out=datetime(2024, 3, 10, 12, 0, tzinfo=UTC),
        created=T0 - timedelta(days=2),
    )
    duplicate = _attendance(
        db, worker, project,
        day=datetime(2024, 3, 9, 18, 30, tzinfo=UTC),
        check_in=datetime(2024, 3, 10, 3, 0, tzinfo=UTC),
        created=T0 - timedelta(days=1),
    )
    assert {row.id for row in find_unnormalized_attendance(db)} == {shifted.id, duplicate.id}

    dry_run = repair_attendance_dates(db, apply=False)
    db.rollback()
    assert [entry["id"] for entry in dry_run["updated"]] == [str(shifted.id)]
    assert dry_run["merged"] == [{"removed": str(duplicate.id), "into": str(normalized.id), "date": "2024-03-10T00:00:00+00:00"}]
    assert db.query(Attendance).count() == 3

    repair_attendance_dates(db, apply=True)
    db.commit()

    assert find_unnormalized_attendance(db) == []
    assert db.query(Attendance).count() == 2
    db.refresh(shifted)
    assert ensure_utc(shifted.date) == datetime(2024, 3, 12, tzinfo=UTC)
    db.refresh(normalized)
    assert ensure_utc(normalized.check_in) == datetime(2024, 3, 10, 3, 0, tzinfo=UTC)
    assert ensure_utc(normalized.check_out) == datetime(2024, 3, 10, 12, 0, tzinfo=UTC)
    assert normalized.pending_checkout is False


def test_repair_midnight_key_on_wrong_local_day(db, worker, project):
    # 20:30 UTC on the 10th is 02:00 IST on the 11th
    misdated = _attendance(
        db, worker, project,
        day=datetime(2024, 3, 10, tzinfo=UTC),
        check_in=datetime(2024, 3, 10, 20, 30, tzinfo=UTC),
    )
    assert [row.id for row in find_unnormalized_attendance(db)] == [misdated.id]

    report = repair_attendance_dates(db, apply=True)
    db.commit()

    assert report["updated"] == [
        {"id": str(misdated.id), "from": "2024-03-10T00:00:00+00:00", "to": "2024-03-11T00:00:00+00:00"}
    ]
    db.refresh(misdated)
    assert ensure_utc(misdated.date) == datetime(2024, 3, 11, tzinfo=UTC)
    assert find_unnormalized_attendance(db) == []


def test_repair_merges_midnight_key_on_wrong_local_day(db, worker, project):
    keeper = _attendance(
        db, worker, project,
        day=datetime(2024, 3, 11, tzinfo=UTC),
        check_in=datetime(2024, 3, 11, 4, 0, tzinfo=UTC),
        created=T0 - timedelta(hours=1),
    )
    misdated = _attendance(
        db, worker, project,
        day=datetime(2024, 3, 10, tzinfo=UTC),
        check_in=datetime(2024, 3, 10, 20, 30, tzinfo=UTC),
        created=T0,
    )

    report = repair_attendance_dates(db, apply=True)
    db.commit()

    assert report["updated"] == []
    assert report["merged"] == [{"removed": str(misdated.id), "into": str(keeper.id), "date": "2024-03-11T00:00:00+00:00"}]
    assert db.query(Attendance).count() == 1
    db.refresh(keeper)
    assert ensure_utc(keeper.check_in) == datetime(2024, 3, 10, 20, 30, tzinfo=UTC)
    assert keeper.pending_checkout is True


def test_geofence_report(factory):
    project = factory.project()
    report = geofence_report(project, SITE_LAT, SITE_LNG, accuracy_m=70)
    assert report["configured"] is True
    assert report["result"]["is_valid"] is True
    assert report["result"]["accuracy_warning"]
    assert report["geofence"]["radius"] == 100


def test_geofence_report_for_legacy_project(db):
    project = Project(name="Legacy", latitude=SITE_LAT, longitude=SITE_LNG)
    db.add(project)
    db.commit()
    report = geofence_report(project, SITE_LAT + 0.01, SITE_LNG)
    assert report["configured"] is False
    assert report["result"]["inside_geofence"] is False
