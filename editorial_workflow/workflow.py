"""Editing session phase transitions."""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Iterable

from .errors import InvalidDecisionError, PendingMarksError, PhaseAlreadyFinalError, UnknownPhaseError
from .models import EditSession, Mark, PhaseRecord, utc_now_iso

logger = logging.getLogger(__name__)

PHASE_ORDER: tuple[str, ...] = (
    "ai_draft",
    "structural_edit",
    "line_edit",
    "copy_edit",
    "proofread",
    "human_review",
    "final_approval",
)

PHASE_LABELS: dict[str, str] = {
    "ai_draft": "AI draft",
    "structural_edit": "Structural edit",
    "line_edit": "Line edit",
    "copy_edit": "Copy edit",
    "proofread": "Proofread",
    "human_review": "Human review",
    "final_approval": "Final approval",
}

CATEGORY_LABELS: dict[str, str] = {
    "spelling": "Spelling",
    "grammar": "Grammar",
    "style": "Style",
    "consistency": "Consistency",
    "translation_style": "Translation style",
    "cliche": "Cliché",
    "pacing": "Pacing",
    "dialogue": "Dialogue",
    "description": "Description",
    "plot": "Plot",
    "character": "Character",
    "other": "Other",
}

HUMAN_PHASES = {"human_review", "final_approval"}

FINAL_PHASE = PHASE_ORDER[-1]


def _validate_phase(phase: str) -> int:
    try:
        return PHASE_ORDER.index(phase)
    except ValueError:
        raise UnknownPhaseError(f"Unknown editing phase '{phase}'.") from None


def phase_index(phase: str) -> int:
    return _validate_phase(phase)


def get_phase_label(phase: str) -> str:
    _validate_phase(phase)
    return PHASE_LABELS[phase]


def get_category_label(category: str) -> str:
    return CATEGORY_LABELS.get(category, CATEGORY_LABELS["other"])


def get_all_phases() -> list[dict[str, str]]:
    return [{"phase": phase, "label": PHASE_LABELS[phase]} for phase in PHASE_ORDER]


def editor_type_for(phase: str) -> str:
    return "human" if phase in HUMAN_PHASES else "ai"


def create_session(
    project_id: str,
    document_ref: str,
    *,
    session_id: str | None = None,
    now_iso: str | None = None,
) -> EditSession:
    timestamp = now_iso or utc_now_iso()
    first = PHASE_ORDER[0]
    return EditSession(
        id=session_id or uuid.uuid4().hex,
        project_id=project_id,
        document_ref=document_ref,
        current_phase=first,
        phases=(PhaseRecord(phase=first, started_at=timestamp, editor_type=editor_type_for(first)),),
        created_at=timestamp,
        updated_at=timestamp,
        status="in_progress",
    )


def pending_marks_for_phase(session: EditSession, marks: Iterable[Mark]) -> list[Mark]:
    """Pending marks that block leaving the session's current phase.

    Marks for other documents are ignored; marks without a phase (e.g. added
    by a human reviewer) count against whichever phase is active.
    """
    return [
        mark
        for mark in marks
        if mark.is_pending
        and (not mark.document_ref or mark.document_ref == session.document_ref)
        and mark.phase in (None, session.current_phase)
    ]


def advance_phase(
    session: EditSession,
    marks: Iterable[Mark] = (),
    *,
    now_iso: str | None = None,
    strict_terminal: bool = False,
) -> EditSession:
    timestamp = now_iso or utc_now_iso()
    current_index = _validate_phase(session.current_phase)

    if session.current_phase == FINAL_PHASE:
        if strict_terminal:
            raise PhaseAlreadyFinalError(f"Session {session.id} is already at {FINAL_PHASE}.")
        if session.status == "approved":
            return session
        return replace(session, status="approved", updated_at=timestamp)

    pending = pending_marks_for_phase(session, marks)
    if pending:
        raise PendingMarksError(
            f"Cannot leave {session.current_phase}: {len(pending)} mark(s) still pending.",
            pending=pending,
        )

    next_phase = PHASE_ORDER[current_index + 1]
    phases = [
        replace(record, completed_at=timestamp)
        if record.phase == session.current_phase and record.completed_at is None
        else record
        for record in session.phases
    ]
    phases.append(PhaseRecord(phase=next_phase, started_at=timestamp, editor_type=editor_type_for(next_phase)))

    status = session.status
    if next_phase == "human_review":
        status = "review"
    elif next_phase == FINAL_PHASE:
        status = "approved"

    logger.info("Session %s advanced %s -> %s", session.id, session.current_phase, next_phase)
    return replace(
        session,
        current_phase=next_phase,
        phases=tuple(phases),
        status=status,
        updated_at=timestamp,
    )


def _update_active_record(session: EditSession, **deltas: int) -> tuple[PhaseRecord, ...]:
    updated: list[PhaseRecord] = []
    touched = False
    for record in reversed(session.phases):
        if not touched and record.phase == session.current_phase:
            changes = {key: getattr(record, key) + value for key, value in deltas.items()}
            updated.append(replace(record, **changes))
            touched = True
        else:
            updated.append(record)
    return tuple(reversed(updated))


def record_marks(session: EditSession, marks: Iterable[Mark], *, now_iso: str | None = None) -> EditSession:
    created = sum(1 for _ in marks)
    if not created:
        return session
    return replace(
        session,
        phases=_update_active_record(session, marks_created=created),
        total_marks=session.total_marks + created,
        updated_at=now_iso or utc_now_iso(),
    )


def record_resolution(session: EditSession, mark: Mark, *, now_iso: str | None = None) -> EditSession:
    if mark.is_pending:
        raise InvalidDecisionError(f"Mark {mark.id} is still pending.")
    return replace(
        session,
        phases=_update_active_record(session, marks_resolved=1),
        resolved_marks=session.resolved_marks + 1,
        accepted_marks=session.accepted_marks + (1 if mark.status == "accepted" else 0),
        rejected_marks=session.rejected_marks + (1 if mark.status == "rejected" else 0),
        updated_at=now_iso or utc_now_iso(),
    )
