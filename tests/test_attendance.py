from datetime import date, datetime, timedelta

import pytest
import pytz

from sitecrew.models.models import Attendance, LocationLog
from sitecrew.services.attendance import AttendanceError, check_in, check_out, today_status
from sitecrew.services.time_rules import ensure_utc

from conftest import SITE_LAT, SITE_LNG

UTC = pytz.UTC
# 02:00 on 11 March in Kolkata
EARLY_CHECK_IN = datetime(2024, 3, 10, 20, 30, tzinfo=UTC)
WORK_DAY = date(2024, 3, 11)


@pytest.fixture
def worker(factory):
    return factory.employee(factory.user("worker1"))


@pytest.fixture
def project(factory):
    return factory.project()


@pytest.fixture
def assigned(factory, worker, project):
    return factory.assignment(worker, project, work_day=WORK_DAY)


def test_check_in_is_keyed_by_local_work_day(db, worker, project, assigned):
    attendance = check_in(db, worker, project, SITE_LAT, SITE_LNG, now=EARLY_CHECK_IN)
    db.commit()

    assert ensure_utc(attendance.date) == datetime(2024, 3, 11, tzinfo=UTC)
    assert attendance.pending_checkout is True
    assert attendance.inside_geofence_at_checkin is True
    logs = db.query(LocationLog).filter(LocationLog.log_type == "CHECK_IN").all()
    assert len(logs) == 1
    assert logs[0].inside_geofence is True


def test_check_in_twice_is_rejected(db, worker, project, assigned):
    check_in(db, worker, project, SITE_LAT, SITE_LNG, now=EARLY_CHECK_IN)
    db.commit()
    with pytest.raises(AttendanceError) as excinfo:
        check_in(db, worker, project, SITE_LAT, SITE_LNG, now=EARLY_CHECK_IN + timedelta(hours=2))
    assert excinfo.value.code == "ALREADY_CHECKED_IN"
    assert db.query(Attendance).count() == 1


def test_check_in_without_assignment(db, worker, project):
    with pytest.raises(AttendanceError) as excinfo:
        check_in(db, worker, project, SITE_LAT, SITE_LNG, now=EARLY_CHECK_IN)
    assert excinfo.value.code == "NO_ASSIGNMENT"


def test_check_in_outside_geofence(db, worker, project, assigned):
    with pytest.raises(AttendanceError) as excinfo:
        check_in(db, worker, project, SITE_LAT + 0.01, SITE_LNG, now=EARLY_CHECK_IN)
    assert excinfo.value.code == "GEOFENCE_VALIDATION_FAILED"
    assert excinfo.value.result.is_valid is False
    assert db.query(Attendance).count() == 0


def test_check_out_requires_check_in(db, worker, project, assigned):
    with pytest.raises(AttendanceError) as excinfo:
        check_out(db, worker, project, SITE_LAT, SITE_LNG, now=EARLY_CHECK_IN)
    assert excinfo.value.code == "NOT_CHECKED_IN"


def test_full_day(db, worker, project, assigned):
    assert today_status(db, worker, project, now=EARLY_CHECK_IN)["status"] == "not_checked_in"

    check_in(db, worker, project, SITE_LAT, SITE_LNG, now=EARLY_CHECK_IN)
    db.commit()
    assert today_status(db, worker, project, now=EARLY_CHECK_IN)["status"] == "checked_in"

    # 17:30 local, same work day
    evening = datetime(2024, 3, 11, 12, 0, tzinfo=UTC)
    attendance = check_out(db, worker, project, SITE_LAT, SITE_LNG, now=evening)
    db.commit()
    assert attendance.pending_checkout is False
    assert attendance.inside_geofence_at_checkout is True

    status = today_status(db, worker, project, now=evening)
    assert status["status"] == "checked_out"
    assert status["date"].startswith("2024-03-11T00:00:00")

    with pytest.raises(AttendanceError) as excinfo:
        check_out(db, worker, project, SITE_LAT, SITE_LNG, now=evening + timedelta(minutes=5))
    assert excinfo.value.code == "ALREADY_CHECKED_OUT"
    assert db.query(Attendance).count() == 1
