"""Flow identity and transient state for user-initiated operations.

A flow (repay loan 7, accept offer 3, ...) gets a fresh :class:`FlowSession`
each time it is opened. Anything that finishes after its session has been
reset or replaced is dropped instead of being applied to the newer flow.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass

from ..engine.approval import ApprovalOrchestrator
from ..models import Failure, FailureKind, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlowSession:
    flow_id: int
    kind: str
    subject_id: int


@dataclass
class FlowState:
    """Transient per-flow inputs; discarded on reset."""

    session: FlowSession
    collateral_token: str = ""
    amount: int = 0
    approval: ApprovalOrchestrator | None = None


class FlowTracker:
    """One active flow per kind; opening a flow replaces the previous one."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._active: dict[str, FlowState] = {}

    def begin(self, kind: str, subject_id: int) -> FlowSession:
        previous = self._active.get(kind)
        session = FlowSession(flow_id=next(self._ids), kind=kind, subject_id=subject_id)
        self._active[kind] = FlowState(session=session)
        if previous is not None:
            logger.info(
                "Replacing %s flow %d (subject %d) with flow %d (subject %d)",
                kind,
                previous.session.flow_id,
                previous.session.subject_id,
                session.flow_id,
                subject_id,
            )
        else:
            logger.info("Opened %s flow %d for %d", kind, session.flow_id, subject_id)
        return session

    def is_active(self, session: FlowSession) -> bool:
        state = self._active.get(session.kind)
        return state is not None and state.session == session

    def state(self, session: FlowSession) -> FlowState | None:
        return self._active[session.kind] if self.is_active(session) else None

    def reset(self, session: FlowSession) -> None:
        """Abandon ``session``; its in-flight results will be dropped."""
        if self.is_active(session):
            del self._active[session.kind]
            logger.info("Reset %s flow %d", session.kind, session.flow_id)

    def end(self, session: FlowSession) -> None:
        if self.is_active(session):
            del self._active[session.kind]

    def guard(self, session: FlowSession, result: Result) -> Result:
        """Pass ``result`` through only while ``session`` is still active."""
        if self.is_active(session):
            return result
        logger.debug(
            "Dropping late result for %s flow %d (subject %d)",
            session.kind,
            session.flow_id,
            session.subject_id,
        )
        return Failure(
            FailureKind.ABANDONED,
            f"The {session.kind} flow for {session.subject_id} was closed before this result arrived.",
        )
