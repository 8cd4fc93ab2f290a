"""
Attendance session engine tests.

Covers clock in/out, the one-open-session rule, duration maths, admin
corrections, the missed clock-out sweep and biometric enrollment.
"""

import asyncio
import math

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (AsyncSession, async_sessionmaker,
                                    create_async_engine)

from worktime.core.clock import MS_PER_HOUR
from worktime.core.exceptions import (ActiveSessionExists, AlreadyClosed,
                                      Conflict, FaceVerificationFailed,
                                      Forbidden, InvalidEnrollment,
                                      InvalidInput, InvalidRange,
                                      NoActiveSession, NotFound, Unauthorized)
from worktime.db.base import Base
from worktime.models.attendance import AttendanceSession, TimeEntry
from worktime.models.audit_log import AuditLogEntry
from worktime.models.user import User
from worktime.repositories.attendance import AttendanceRepository
from worktime.services.attendance import (AttendanceEngine, GeoFix,
                                          Verification, elapsed_seconds,
                                          format_duration)
from worktime.services.geofence import GeoPoint, Region
from worktime.services.identity import Principal
from worktime.services.policy import PolicyService

WEB = Verification(ip="10.0.0.1", user_agent="pytest")


def _vector(*head: float) -> list[float]:
    return list(head) + [0.0] * (64 - len(head))


async def _open_sessions(db: AsyncSession, user_id: int) -> list[AttendanceSession]:
    result = await db.execute(
        select(AttendanceSession).where(
            AttendanceSession.user_id == user_id,
            AttendanceSession.clock_out_at.is_(None),
        )
    )
    return list(result.scalars().all())


async def _actions(db: AsyncSession) -> list[str]:
    result = await db.execute(select(AuditLogEntry.action).order_by(AuditLogEntry.id))
    return list(result.scalars().all())


# ── Clock in ────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_clock_in_without_enrollment(db_session, clock, staff):
    """A user with no template clocks in over the web with no geo."""
    engine = AttendanceEngine(db_session, clock)
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)

    session = await AttendanceRepository(db_session).get(session_id)
    assert session.is_open
    assert session.face_pass is None
    assert session.face_score is None
    assert session.in_office is None
    assert session.clock_in_at == clock.now
    assert session.ip == "10.0.0.1"
    assert await _actions(db_session) == ["clock_in"]


@pytest.mark.asyncio
async def test_clock_in_requires_identity(db_session, clock, staff):
    with pytest.raises(Unauthorized):
        await AttendanceEngine(db_session, clock).clock_in(None, method="web", verification=WEB)


@pytest.mark.asyncio
async def test_clock_in_rejects_unknown_method(db_session, clock, staff):
    with pytest.raises(InvalidInput):
        await AttendanceEngine(db_session, clock).clock_in(
            staff.alice, method="carrier-pigeon", verification=WEB
        )


@pytest.mark.asyncio
async def test_second_clock_in_conflicts(db_session, clock, staff):
    """Only one of two clock-ins may open a session."""
    engine = AttendanceEngine(db_session, clock)
    await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock.advance(1000)

    with pytest.raises(ActiveSessionExists) as excinfo:
        await engine.clock_in(staff.alice, method="mobile", verification=WEB)
    assert isinstance(excinfo.value, Conflict)

    assert len(await _open_sessions(db_session, staff.alice.id)) == 1
    assert await _actions(db_session) == ["clock_in"]


@pytest.mark.asyncio
async def test_database_rejects_two_open_sessions(db_session, clock, staff):
    """The partial unique index holds even when the read check is bypassed."""
    def _open(user_id: int) -> AttendanceSession:
        return AttendanceSession(
            user_id=user_id,
            clock_in_at=clock.now,
            method="web",
            ip="1.1.1.1",
            user_agent="x",
            missed_clock_out=False,
            created_at=clock.now,
            updated_at=clock.now,
        )

    db_session.add(_open(staff.bob.id))
    await db_session.commit()

    db_session.add(_open(staff.bob.id))
    with pytest.raises(IntegrityError):
        await db_session.flush()
    await db_session.rollback()

    assert len(await _open_sessions(db_session, staff.bob.id)) == 1


@pytest.mark.asyncio
async def test_insert_open_only_translates_the_open_session_index(db_session, clock, staff):
    """Other integrity failures are not reported as a duplicate clock-in."""
    broken = AttendanceSession(
        user_id=staff.bob.id,
        clock_in_at=clock.now,
        method="web",
        ip=None,
        user_agent="x",
        missed_clock_out=False,
        created_at=clock.now,
        updated_at=clock.now,
    )
    with pytest.raises(IntegrityError):
        await AttendanceRepository(db_session).insert_open(broken)
    await db_session.rollback()


@pytest.mark.asyncio
async def test_concurrent_clock_ins_open_one_session(tmp_path, clock):
    """Racing clock-ins on separate connections leave exactly one open session."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        connect_args={"timeout": 30},
    )
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with factory() as db:
            user = User(email="racer@test.com", hashed_password="pw", role="employee", is_active=True)
            db.add(user)
            await db.commit()
        racer = Principal(id=user.id, role=user.role)

        async def attempt() -> int:
            async with factory() as db:
                return await AttendanceEngine(db, clock).clock_in(
                    racer, method="web", verification=WEB
                )

        results = await asyncio.gather(*(attempt() for _ in range(8)), return_exceptions=True)

        winners = [r for r in results if isinstance(r, int)]
        losers = [r for r in results if not isinstance(r, int)]
        assert len(winners) == 1
        assert len(losers) == 7
        assert all(isinstance(r, Conflict) for r in losers), losers
        async with factory() as db:
            open_rows = await _open_sessions(db, user.id)
        assert [row.id for row in open_rows] == winners
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_closed_sessions_do_not_block_clock_in(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock.advance(MS_PER_HOUR)
    await engine.clock_out(staff.alice, verification=WEB)
    clock.advance(MS_PER_HOUR)
    await engine.clock_in(staff.alice, method="kiosk", verification=WEB)

    history = await engine.history(staff.alice)
    assert [s.method for s in history] == ["kiosk", "web"]


# ── Face verification ───────────────────────────────────────────────
@pytest.mark.asyncio
async def test_orthogonal_face_blocks_clock_in(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    await engine.enroll_face(staff.alice, embedding=_vector(1.0), consent=True)

    live = Verification(ip="10.0.0.1", user_agent="pytest", face_embedding=_vector(0.0, 1.0))
    with pytest.raises(FaceVerificationFailed):
        await engine.clock_in(staff.alice, method="kiosk", verification=live)

    assert await _open_sessions(db_session, staff.alice.id) == []
    assert "clock_in" not in await _actions(db_session)


@pytest.mark.asyncio
async def test_matching_face_records_score(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    await engine.enroll_face(staff.alice, embedding=_vector(1.0), consent=True)

    live = Verification(
        ip="10.0.0.1",
        user_agent="pytest",
        face_embedding=_vector(17.0, 5.0, 9.0, 2.0, 1.0),
    )
    session_id = await engine.clock_in(staff.alice, method="kiosk", verification=live)

    session = await AttendanceRepository(db_session).get(session_id)
    assert session.face_pass is True
    assert session.face_score == pytest.approx(0.85)


@pytest.mark.asyncio
async def test_enrolled_user_without_live_sample_skips_check(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    await engine.enroll_face(staff.alice, embedding=_vector(1.0), consent=True)
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)

    session = await AttendanceRepository(db_session).get(session_id)
    assert session.face_pass is None


# ── Geofence tagging ────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_clock_in_is_tagged_with_geofence(db_session, clock, staff):
    hq = Region(name="HQ", center=GeoPoint(lat=40.7128, lng=-74.0060), radius_m=200)
    await PolicyService(db_session, clock).update_geofences(staff.admin, [hq])

    engine = AttendanceEngine(db_session, clock)
    inside = Verification(ip="10.0.0.1", user_agent="pytest", geo=GeoFix(40.7129, -74.0060, 5.0))
    session_id = await engine.clock_in(staff.alice, method="mobile", verification=inside)
    session = await AttendanceRepository(db_session).get(session_id)
    assert session.in_office is True
    assert session.location_name == "HQ"

    outside = Verification(ip="10.0.0.2", user_agent="pytest", geo=GeoFix(41.0, -74.0))
    session_id = await engine.clock_in(staff.bob, method="mobile", verification=outside)
    session = await AttendanceRepository(db_session).get(session_id)
    assert session.in_office is False
    assert session.location_name == "Remote"


# ── Clock out ───────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_clock_out_duration(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock.advance(3_723_999)

    result = await engine.clock_out(staff.alice, verification=WEB, notes="done")

    assert result.session_id == session_id
    assert result.duration_sec == 3723
    assert result.duration_formatted == "1h 2m 3s"
    session = await AttendanceRepository(db_session).get(session_id)
    assert session.clock_out_at == clock.now
    assert session.duration_sec == 3723
    assert session.notes == "done"
    assert await _actions(db_session) == ["clock_in", "clock_out"]


@pytest.mark.parametrize("elapsed_ms", [0, 999, 59_999, 86_399_999, 90_061_500])
def test_formatted_duration_adds_up(elapsed_ms):
    seconds = elapsed_seconds(0, elapsed_ms)
    assert seconds == math.floor(elapsed_ms / 1000)
    h, m, s = (int(part[:-1]) for part in format_duration(seconds).split())
    assert h * 3600 + m * 60 + s == seconds
    assert 0 <= m < 60 and 0 <= s < 60


def test_elapsed_seconds_never_negative():
    assert elapsed_seconds(5_000, 1_000) == 0


@pytest.mark.asyncio
async def test_clock_out_after_clock_stepped_back(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock.advance(-90_000)

    result = await engine.clock_out(staff.alice, verification=WEB)

    assert result.duration_sec == 0
    assert result.duration_formatted == "0h 0m 0s"
    session = await AttendanceRepository(db_session).get(session_id)
    assert session.duration_sec == 0


@pytest.mark.asyncio
async def test_clock_out_without_open_session(db_session, clock, staff):
    with pytest.raises(NoActiveSession):
        await AttendanceEngine(db_session, clock).clock_out(staff.alice, verification=WEB)


@pytest.mark.asyncio
async def test_clock_out_by_session_id(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock.advance(60_000)

    with pytest.raises(NotFound):
        await engine.clock_out(staff.alice, session_id=session_id + 100)
    with pytest.raises(Forbidden):
        await engine.clock_out(staff.bob, session_id=session_id)
    with pytest.raises(Forbidden):
        await engine.clock_out(staff.manager, session_id=session_id)

    result = await engine.clock_out(staff.admin, session_id=session_id)
    assert result.duration_sec == 60

    with pytest.raises(AlreadyClosed):
        await engine.clock_out(staff.alice, session_id=session_id)


@pytest.mark.asyncio
async def test_clock_out_records_out_location(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    checkin = Verification(ip="1.1.1.1", user_agent="ua", geo=GeoFix(10.0, 20.0, 3.0))
    session_id = await engine.clock_in(staff.alice, method="mobile", verification=checkin)
    clock.advance(1000)
    checkout = Verification(ip="1.1.1.1", user_agent="ua", geo=GeoFix(10.5, 20.5))
    await engine.clock_out(staff.alice, verification=checkout)

    locations = await engine.session_locations(staff.alice, session_id)
    assert [loc["type"] for loc in locations] == ["clock_in", "clock_out"]
    assert locations[1]["location"] == {"lat": 10.5, "lng": 20.5, "acc": None}

    with pytest.raises(Forbidden):
        await engine.session_locations(staff.bob, session_id)
    assert len(await engine.session_locations(staff.manager, session_id)) == 2


@pytest.mark.asyncio
async def test_project_session_emits_time_entry(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    session_id = await engine.clock_in(
        staff.alice, method="web", verification=WEB, project_id="apollo", task_id="t-1"
    )
    clock.advance(2 * MS_PER_HOUR)
    await engine.clock_out(staff.alice, verification=WEB)

    entries = (await db_session.execute(select(TimeEntry))).scalars().all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.session_id == session_id
    assert (entry.project_id, entry.task_id) == ("apollo", "t-1")
    assert entry.ended_at - entry.started_at == 2 * MS_PER_HOUR
    assert entry.duration_sec == 7200


@pytest.mark.asyncio
async def test_plain_session_emits_no_time_entry(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock.advance(1000)
    await engine.clock_out(staff.alice, verification=WEB)

    assert (await db_session.execute(select(TimeEntry))).scalars().all() == []


# ── Admin correction ────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_fix_clock_out_before_clock_in_is_rejected(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock.advance(MS_PER_HOUR)

    with pytest.raises(InvalidRange) as excinfo:
        await engine.admin_fix_clock_out(
            staff.admin, session_id=session_id, clock_out_at=clock.now - 2 * MS_PER_HOUR
        )
    assert isinstance(excinfo.value, InvalidInput)

    session = await AttendanceRepository(db_session).get(session_id)
    assert session.is_open
    assert session.closed_by_admin_id is None
    assert await _actions(db_session) == ["clock_in"]


@pytest.mark.asyncio
async def test_fix_clock_out(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)
    clock_in_at = clock.now
    clock.advance(30 * MS_PER_HOUR)

    with pytest.raises(Forbidden):
        await engine.admin_fix_clock_out(
            staff.alice, session_id=session_id, clock_out_at=clock_in_at + MS_PER_HOUR
        )

    assert await engine.admin_fix_clock_out(
        staff.manager,
        session_id=session_id,
        clock_out_at=clock_in_at + 9 * MS_PER_HOUR,
        notes="forgot to clock out",
    )
    session = await AttendanceRepository(db_session).get(session_id)
    assert session.clock_out_at == clock_in_at + 9 * MS_PER_HOUR
    assert session.duration_sec == 9 * 3600
    assert session.closed_by_admin_id == staff.manager.id
    assert session.notes == "forgot to clock out"

    with pytest.raises(AlreadyClosed):
        await engine.admin_fix_clock_out(
            staff.admin, session_id=session_id, clock_out_at=clock_in_at + MS_PER_HOUR
        )


@pytest.mark.asyncio
async def test_missed_clock_out_sweep(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    stale_id = await engine.clock_in(staff.alice, method="web", verification=WEB)
    stale_in = clock.now
    clock.advance(20 * MS_PER_HOUR)
    fresh_id = await engine.clock_in(staff.bob, method="web", verification=WEB)
    clock.advance(5 * MS_PER_HOUR)

    with pytest.raises(Forbidden):
        await engine.mark_missed_clock_outs(staff.alice)

    assert await engine.mark_missed_clock_outs(staff.admin) == [stale_id]

    repo = AttendanceRepository(db_session)
    stale = await repo.get(stale_id)
    assert stale.missed_clock_out is True
    assert stale.clock_out_at == stale_in + 8 * MS_PER_HOUR
    assert stale.duration_sec == 8 * 3600
    assert (await repo.get(fresh_id)).is_open


# ── History ─────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_history_scoping(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    for _ in range(3):
        await engine.clock_in(staff.alice, method="web", verification=WEB)
        clock.advance(MS_PER_HOUR)
        await engine.clock_out(staff.alice, verification=WEB)
        clock.advance(MS_PER_HOUR)

    assert len(await engine.history(staff.alice, limit=2)) == 2
    assert len(await engine.history(staff.manager, user_id=staff.alice.id)) == 3
    assert await engine.history(staff.alice, start_date=clock.now) == []
    with pytest.raises(Forbidden):
        await engine.history(staff.bob, user_id=staff.alice.id)
    with pytest.raises(InvalidRange):
        await engine.history(staff.alice, start_date=clock.now, end_date=clock.now - 1)


@pytest.mark.asyncio
async def test_current_session(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    assert await engine.current_session(staff.alice) is None
    session_id = await engine.clock_in(staff.alice, method="web", verification=WEB)
    assert (await engine.current_session(staff.alice)).id == session_id
    assert await engine.current_session(staff.bob) is None


# ── Biometrics ──────────────────────────────────────────────────────
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "embedding, consent",
    [
        (_vector(1.0), False),
        (_vector(1.0), "true"),
        (_vector(1.0), 1),
        ([1.0] * 63, True),
        ([1.0] * 1025, True),
        (_vector(float("nan")), True),
        (_vector(float("inf")), True),
        (["one"] * 64, True),
        ([_vector(1.0)], True),
    ],
)
async def test_invalid_enrollment(db_session, clock, staff, embedding, consent):
    engine = AttendanceEngine(db_session, clock)
    with pytest.raises(InvalidEnrollment):
        await engine.enroll_face(staff.alice, embedding=embedding, consent=consent)


@pytest.mark.asyncio
async def test_enroll_and_delete_biometrics(db_session, clock, staff):
    engine = AttendanceEngine(db_session, clock)
    assert await engine.enroll_face(staff.alice, embedding=[0.5] * 1024, consent=True)

    user = await db_session.get(User, staff.alice.id)
    assert user.face_enrolled
    assert len(user.face_embedding) == 1024
    assert user.face_consent_at == clock.now

    assert await engine.delete_biometric_data(staff.alice)
    user = await db_session.get(User, staff.alice.id)
    assert user.face_embedding is None
    assert user.face_consent_at is None
    assert await _actions(db_session) == ["enroll_face", "delete_biometric_data"]
