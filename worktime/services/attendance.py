"""
Attendance session engine.

A user cycles through many sessions, each going Open -> Closed exactly once.
Every mutating operation runs as a single unit of work that also stages its
audit row, so a failure leaves sessions, time entries and the trail untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.core.clock import MS_PER_HOUR, MS_PER_SECOND, Clock, system_clock
from worktime.core.config import settings
from worktime.core.exceptions import (ActiveSessionExists, AlreadyClosed,
                                      FaceVerificationFailed, Forbidden,
                                      InvalidEnrollment, InvalidInput,
                                      InvalidRange, NoActiveSession, NotFound)
from worktime.db.session import transaction
from worktime.models.attendance import METHODS, AttendanceSession, TimeEntry
from worktime.models.user import User
from worktime.repositories.attendance import AttendanceRepository
from worktime.repositories.policy import PolicyRepository
from worktime.repositories.users import UserRepository
from worktime.services import audit, face
from worktime.services.geofence import GeoPoint, Region, locate
from worktime.services.identity import (ADMIN, ANY_ROLE, PRIVILEGED, Principal,
                                        require_role,
                                        require_self_or_privileged)

logger = logging.getLogger(__name__)

REMOTE = "Remote"


@dataclass(frozen=True)
class GeoFix:
    lat: float
    lng: float
    acc: float | None = None


@dataclass(frozen=True)
class Verification:
    ip: str
    user_agent: str
    geo: GeoFix | None = None
    # Live sample; compared once and then dropped.
    face_embedding: Sequence[float] | None = None


@dataclass(frozen=True)
class ClockOutResult:
    session_id: int
    duration_sec: int
    duration_formatted: str


def format_duration(total_seconds: int) -> str:
    hours, rest = divmod(int(total_seconds), 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h {minutes}m {seconds}s"


def elapsed_seconds(start_ms: int, end_ms: int) -> int:
    """Whole seconds between two instants, never negative.

    A wall clock that stepped backwards after clock-in yields zero.
    """
    return max(0, (end_ms - start_ms) // MS_PER_SECOND)


class AttendanceEngine:
    """Clock-in / clock-out state machine plus biometric enrollment."""

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self._db = db
        self._clock = clock
        self._sessions = AttendanceRepository(db)
        self._users = UserRepository(db)
        self._policy = PolicyRepository(db)

    async def _load_user(self, user_id: int) -> User:
        user = await self._users.get(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    async def _tag_location(self, geo: GeoFix) -> tuple[bool, str]:
        regions = [Region.from_dict(raw) for raw in await self._policy.geofences()]
        match = locate(GeoPoint(lat=geo.lat, lng=geo.lng), regions)
        return match.in_region, match.region_name or REMOTE

    def _emit_time_entry(
        self, session: AttendanceSession, *, ended_at: int, duration_sec: int, now: int
    ) -> TimeEntry | None:
        if session.project_id is None and session.task_id is None:
            return None
        return self._sessions.add_time_entry(
            TimeEntry(
                user_id=session.user_id,
                session_id=session.id,
                project_id=session.project_id,
                task_id=session.task_id,
                started_at=session.clock_in_at,
                ended_at=ended_at,
                duration_sec=duration_sec,
                note=session.notes,
                created_at=now,
            )
        )

    # ── Clock in ───────────────────────────────────────────────────
    async def clock_in(
        self,
        caller: Principal | None,
        *,
        method: str,
        verification: Verification,
        project_id: str | None = None,
        task_id: str | None = None,
        notes: str | None = None,
    ) -> int:
        principal = require_role(caller, ANY_ROLE)
        if method not in METHODS:
            raise InvalidInput(f"Method must be one of: {', '.join(METHODS)}")

        async with transaction(self._db):
            user = await self._load_user(principal.id)

            face_score: float | None = None
            face_pass: bool | None = None
            if user.face_embedding and verification.face_embedding:
                match = face.verify(user.face_embedding, verification.face_embedding)
                if not match.passed:
                    logger.warning(
                        "Face verification failed for user %d (score %.4f)", user.id, match.score
                    )
                    raise FaceVerificationFailed(
                        f"Face verification failed (score {match.score:.3f})"
                    )
                face_score, face_pass = match.score, True

            in_office: bool | None = None
            location_name: str | None = None
            geo = verification.geo
            if geo is not None:
                in_office, location_name = await self._tag_location(geo)

            if await self._sessions.get_open_for_user(user.id, for_update=True):
                raise ActiveSessionExists()

            now = self._clock()
            session = AttendanceSession(
                user_id=user.id,
                clock_in_at=now,
                method=method,
                ip=verification.ip,
                user_agent=verification.user_agent,
                geo_lat=geo.lat if geo else None,
                geo_lng=geo.lng if geo else None,
                geo_acc=geo.acc if geo else None,
                face_score=face_score,
                face_pass=face_pass,
                in_office=in_office,
                location_name=location_name,
                project_id=project_id,
                task_id=task_id,
                notes=notes,
                missed_clock_out=False,
                created_at=now,
                updated_at=now,
            )
            await self._sessions.insert_open(session)
            audit.record(
                self._db,
                actor_id=principal.id,
                action="clock_in",
                target_type="attendance_session",
                target_id=session.id,
                at=now,
                metadata={
                    "method": method,
                    "ip": verification.ip,
                    "face_score": face_score,
                    "in_office": in_office,
                    "location_name": location_name,
                    "project_id": project_id,
                    "task_id": task_id,
                },
            )

        logger.info("User %d clocked in (session %d, %s)", principal.id, session.id, method)
        return session.id

    # ── Clock out ──────────────────────────────────────────────────
    async def clock_out(
        self,
        caller: Principal | None,
        *,
        session_id: int | None = None,
        verification: Verification | None = None,
        notes: str | None = None,
    ) -> ClockOutResult:
        principal = require_role(caller, ANY_ROLE)

        async with transaction(self._db):
            if session_id is not None:
                session = await self._sessions.get(session_id, for_update=True)
                if session is None:
                    raise NotFound("Session not found")
                if session.user_id != principal.id and principal.role != ADMIN:
                    raise Forbidden("You can only clock out of your own session")
                if not session.is_open:
                    raise AlreadyClosed()
            else:
                session = await self._sessions.get_open_for_user(principal.id, for_update=True)
                if session is None:
                    raise NoActiveSession()

            now = self._clock()
            duration = elapsed_seconds(session.clock_in_at, now)
            extra: dict[str, object] = {"notes": notes or session.notes}
            geo = verification.geo if verification else None
            if geo is not None:
                extra.update(out_geo_lat=geo.lat, out_geo_lng=geo.lng, out_geo_acc=geo.acc)

            closed = await self._sessions.close(
                session, clock_out_at=now, duration_sec=duration, updated_at=now, **extra
            )
            if not closed:
                raise AlreadyClosed()

            self._emit_time_entry(session, ended_at=now, duration_sec=duration, now=now)
            audit.record(
                self._db,
                actor_id=principal.id,
                action="clock_out",
                target_type="attendance_session",
                target_id=session.id,
                at=now,
                metadata={"user_id": session.user_id, "duration_sec": duration},
            )

        logger.info("Session %d closed after %ds", session.id, duration)
        return ClockOutResult(
            session_id=session.id,
            duration_sec=duration,
            duration_formatted=format_duration(duration),
        )

    # ── Administrative correction ──────────────────────────────────
    async def admin_fix_clock_out(
        self,
        caller: Principal | None,
        *,
        session_id: int,
        clock_out_at: int,
        notes: str | None = None,
    ) -> bool:
        principal = require_role(caller, PRIVILEGED)

        async with transaction(self._db):
            session = await self._sessions.get(session_id, for_update=True)
            if session is None:
                raise NotFound("Session not found")
            if not session.is_open:
                raise AlreadyClosed()
            if clock_out_at < session.clock_in_at:
                raise InvalidRange("Clock-out time cannot precede clock-in time")

            now = self._clock()
            duration = elapsed_seconds(session.clock_in_at, clock_out_at)
            closed = await self._sessions.close(
                session,
                clock_out_at=clock_out_at,
                duration_sec=duration,
                updated_at=now,
                closed_by_admin_id=principal.id,
                notes=notes or session.notes,
            )
            if not closed:
                raise AlreadyClosed()

            self._emit_time_entry(session, ended_at=clock_out_at, duration_sec=duration, now=now)
            audit.record(
                self._db,
                actor_id=principal.id,
                action="admin_fix_clock_out",
                target_type="attendance_session",
                target_id=session.id,
                at=now,
                metadata={
                    "user_id": session.user_id,
                    "clock_out_at": clock_out_at,
                    "duration_sec": duration,
                },
            )

        logger.info("Admin %d fixed clock-out of session %d", principal.id, session_id)
        return True

    async def mark_missed_clock_outs(self, caller: Principal | None) -> list[int]:
        """Close sessions left open past the cutoff at an assumed workday length."""
        principal = require_role(caller, PRIVILEGED)
        now = self._clock()
        cutoff = now - settings.MISSED_CLOCK_OUT_AFTER_HOURS * MS_PER_HOUR
        workday_ms = settings.ASSUMED_WORKDAY_HOURS * MS_PER_HOUR
        closed_ids: list[int] = []

        async with transaction(self._db):
            for session in await self._sessions.open_started_before(cutoff):
                clock_out_at = session.clock_in_at + workday_ms
                duration = elapsed_seconds(session.clock_in_at, clock_out_at)
                closed = await self._sessions.close(
                    session,
                    clock_out_at=clock_out_at,
                    duration_sec=duration,
                    updated_at=now,
                    closed_by_admin_id=principal.id,
                    missed_clock_out=True,
                )
                if not closed:
                    continue
                self._emit_time_entry(
                    session, ended_at=clock_out_at, duration_sec=duration, now=now
                )
                audit.record(
                    self._db,
                    actor_id=principal.id,
                    action="mark_missed_clock_out",
                    target_type="attendance_session",
                    target_id=session.id,
                    at=now,
                    metadata={"user_id": session.user_id, "clock_out_at": clock_out_at},
                )
                closed_ids.append(session.id)

        if closed_ids:
            logger.info("Marked %d missed clock-out session(s)", len(closed_ids))
        return closed_ids

    # ── Biometrics ─────────────────────────────────────────────────
    async def enroll_face(
        self,
        caller: Principal | None,
        *,
        embedding: Sequence[float],
        consent: object,
    ) -> bool:
        principal = require_role(caller, ANY_ROLE)
        if consent is not True:
            raise InvalidEnrollment("Explicit consent is required to enroll face data")
        try:
            vector = np.asarray(embedding, dtype=float)
        except (TypeError, ValueError) as exc:
            raise InvalidEnrollment("Embedding must contain only numbers") from exc
        low, high = settings.FACE_EMBEDDING_MIN_DIMS, settings.FACE_EMBEDDING_MAX_DIMS
        if vector.ndim != 1 or not low <= vector.size <= high:
            raise InvalidEnrollment(f"Embedding must have between {low} and {high} values")
        if not np.isfinite(vector).all():
            raise InvalidEnrollment("Embedding must contain only finite numbers")
        values = vector.tolist()

        async with transaction(self._db):
            user = await self._load_user(principal.id)
            now = self._clock()
            user.face_embedding = values
            user.face_consent_at = now
            audit.record(
                self._db,
                actor_id=principal.id,
                action="enroll_face",
                target_type="user",
                target_id=user.id,
                at=now,
                metadata={"dims": len(values)},
            )

        logger.info("User %d enrolled a %d-dim face template", principal.id, len(values))
        return True

    async def delete_biometric_data(self, caller: Principal | None) -> bool:
        principal = require_role(caller, ANY_ROLE)

        async with transaction(self._db):
            user = await self._load_user(principal.id)
            now = self._clock()
            user.face_embedding = None
            user.face_consent_at = None
            audit.record(
                self._db,
                actor_id=principal.id,
                action="delete_biometric_data",
                target_type="user",
                target_id=user.id,
                at=now,
            )

        logger.info("User %d deleted biometric data", principal.id)
        return True

    # ── Reads ──────────────────────────────────────────────────────
    async def current_session(self, caller: Principal | None) -> AttendanceSession | None:
        principal = require_role(caller, ANY_ROLE)
        return await self._sessions.get_open_for_user(principal.id)

    async def history(
        self,
        caller: Principal | None,
        *,
        user_id: int | None = None,
        start_date: int | None = None,
        end_date: int | None = None,
        limit: int = 50,
    ) -> list[AttendanceSession]:
        principal = require_role(caller, ANY_ROLE)
        target = principal.id if user_id is None else user_id
        require_self_or_privileged(principal, target)
        if start_date is not None and end_date is not None and start_date > end_date:
            raise InvalidRange("Start date must not be after end date")
        limit = max(1, min(limit, settings.HISTORY_MAX_LIMIT))
        return await self._sessions.history(target, start=start_date, end=end_date, limit=limit)

    async def session_locations(self, caller: Principal | None, session_id: int) -> list[dict]:
        """Clock-in and clock-out fixes only; no continuous tracking is kept."""
        principal = require_role(caller, ANY_ROLE)
        session = await self._sessions.get(session_id)
        if session is None:
            raise NotFound("Session not found")
        require_self_or_privileged(principal, session.user_id)

        locations = []
        if session.geo_lat is not None and session.geo_lng is not None:
            locations.append(
                {
                    "type": "clock_in",
                    "timestamp": session.clock_in_at,
                    "location": {"lat": session.geo_lat, "lng": session.geo_lng, "acc": session.geo_acc},
                }
            )
        if session.clock_out_at is not None and session.out_geo_lat is not None:
            locations.append(
                {
                    "type": "clock_out",
                    "timestamp": session.clock_out_at,
                    "location": {
                        "lat": session.out_geo_lat,
                        "lng": session.out_geo_lng,
                        "acc": session.out_geo_acc,
                    },
                }
            )
        return locations
