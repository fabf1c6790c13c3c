"""
spec-coordinator - session persistence

Purpose
- Create, load, persist and retire the durable :class:`Session` record.

Layout (under the working directory)
- ``.spec-coord/session``: pointer file holding the linked session id.
- ``.spec-coord/sessions/<id>.json``: full snapshot of one session.

Every persist rewrites the whole snapshot atomically. Readers treat a missing,
unreadable or corrupt snapshot as "no session".
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from spec_coordinator.constants import (
    LOGS_DIR,
    REPORTS_DIR,
    SESSION_POINTER_FILE,
    SESSIONS_DIR,
    STATE_DIR,
)
from spec_coordinator.domain.ids import generate_session_id, validate_session_id
from spec_coordinator.domain.models import (
    Session,
    SessionConfig,
    SessionMode,
    SessionStatus,
    SpecEntry,
    ToolName,
    utc_now,
)
from spec_coordinator.utils.fs import atomic_write, atomic_write_json


@dataclass(frozen=True, slots=True)
class StatePaths:
    """Filesystem locations of coordinator state for one working directory."""

    working_directory: Path

    @property
    def state_dir(self) -> Path:
        return self.working_directory / STATE_DIR

    @property
    def pointer_file(self) -> Path:
        return self.state_dir / SESSION_POINTER_FILE

    @property
    def sessions_dir(self) -> Path:
        return self.state_dir / SESSIONS_DIR

    @property
    def reports_dir(self) -> Path:
        return self.state_dir / REPORTS_DIR

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / LOGS_DIR

    def session_file(self, session_id: str) -> Path:
        validate_session_id(session_id)
        return self.sessions_dir / f"{session_id}.json"


class SessionStore:
    """Owns the on-disk session record for one working directory."""

    def __init__(self, working_directory: Path | str, *, logger: Any | None = None) -> None:
        self._paths = StatePaths(Path(working_directory).resolve())
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def paths(self) -> StatePaths:
        return self._paths

    def create(
        self,
        specs: Sequence[SpecEntry],
        lead: ToolName,
        validators: Sequence[ToolName],
        config: SessionConfig,
        *,
        mode: SessionMode = SessionMode.RUN,
        link: bool = True,
    ) -> Session:
        """Start a new in-progress session, persist it, and optionally link it."""

        now = utc_now()
        session = Session(
            id=generate_session_id(),
            working_directory=str(self._paths.working_directory),
            lead=lead,
            validators=list(validators),
            config=config,
            specs=list(specs),
            status=SessionStatus.IN_PROGRESS,
            current_spec_index=0,
            mode=mode,
            created_at=now,
            updated_at=now,
        )
        self.persist(session)
        if link:
            atomic_write(self._paths.pointer_file, session.id + "\n")
        self._logger.info(
            "session_created",
            session_id=session.id,
            mode=mode.value,
            specs=len(session.specs),
            lead=lead.value,
            validators=[tool.value for tool in validators],
        )
        return session

    def linked_session_id(self) -> str | None:
        try:
            raw = self._paths.pointer_file.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as exc:
            self._logger.warning("session_pointer_unreadable", error=str(exc))
            return None
        if not raw:
            return None
        try:
            validate_session_id(raw)
        except ValueError as exc:
            self._logger.warning("session_pointer_invalid", error=str(exc))
            return None
        return raw

    def load(self) -> Session | None:
        """The linked session, or ``None`` when there is none or it cannot be read."""

        session_id = self.linked_session_id()
        if session_id is None:
            return None
        return self.load_by_id(session_id)

    def load_by_id(self, session_id: str) -> Session | None:
        try:
            path = self._paths.session_file(session_id)
        except ValueError:
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._logger.warning("session_file_missing", session_id=session_id, path=str(path))
            return None
        except OSError as exc:
            self._logger.warning("session_file_unreadable", session_id=session_id, error=str(exc))
            return None
        try:
            return Session.from_json(raw)
        except ValueError as exc:
            self._logger.warning("session_file_corrupt", session_id=session_id, error=str(exc))
            return None

    def persist(self, session: Session) -> None:
        session.updated_at = utc_now()
        atomic_write_json(self._paths.session_file(session.id), session.to_dict())

    def complete(self, session: Session) -> None:
        """Mark ``session`` completed, persist it, and drop the pointer to it."""

        session.status = SessionStatus.COMPLETED
        self.persist(session)
        if self.linked_session_id() == session.id:
            self.unlink()
        self._logger.info("session_completed", session_id=session.id)

    def unlink(self) -> None:
        self._paths.pointer_file.unlink(missing_ok=True)

    def list_sessions(self) -> list[Session]:
        """Every readable session snapshot, newest first."""

        if not self._paths.sessions_dir.is_dir():
            return []
        sessions: list[Session] = []
        for path in sorted(self._paths.sessions_dir.glob("*.json"), reverse=True):
            session = self.load_by_id(path.stem)
            if session is not None:
                sessions.append(session)
        return sessions


def needs_resume(session: Session | None) -> bool:
    """True when ``session`` stopped before every spec settled."""

    if session is None:
        return False
    if session.status in (SessionStatus.COMPLETED, SessionStatus.ABANDONED):
        return False
    return not session.all_specs_settled()


__all__ = ["SessionStore", "StatePaths", "needs_resume"]
