"""
Analysis dialog router – the HTTP channel for the slot-filling dialog.

Endpoints:
    POST   /api/analysis/turns                          → deliver one user turn
    GET    /api/analysis/sessions/{session_id}/profile  → answers collected so far
    DELETE /api/analysis/sessions/{session_id}          → cancel a pending dialog
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from app.agent.analysis_dialog import AnalysisDialog
from app.agent.state import (
    AwaitingInput,
    InMemoryDialogStore,
    InMemoryProfileStore,
    TurnContext,
)
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])

ANALYSIS_DIALOG = "analysisDialog"

# Process-wide session state.  Turns for one session are serialised; a
# session's lock only exists while some request holds or waits for it.
profile_store = InMemoryProfileStore()
dialog_store = InMemoryDialogStore()
_session_locks: dict[str, asyncio.Lock] = {}
_lock_users: dict[str, int] = {}
_dialog: AnalysisDialog | None = None


@asynccontextmanager
async def _session_turn(session_id: str) -> AsyncIterator[None]:
    """Hold the session's lock for the duration of one request."""
    lock = _session_locks.setdefault(session_id, asyncio.Lock())
    _lock_users[session_id] = _lock_users.get(session_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _lock_users[session_id] -= 1
        if not _lock_users[session_id]:
            del _lock_users[session_id]
            _session_locks.pop(session_id, None)


def get_dialog() -> AnalysisDialog:
    """Dependency returning the shared dialog, built on first use."""
    global _dialog
    if _dialog is None:
        _dialog = AnalysisDialog(
            ANALYSIS_DIALOG, profile_store, dialog_store=dialog_store
        )
    return _dialog


# ── Schemas ──────────────────────────────────────────────────────


class ProfileIn(BaseModel):
    data_source: str | None = None
    time_period: str | None = None


class TurnRequest(BaseModel):
    session_id: str | None = None
    text: str | None = None
    profile: ProfileIn | None = None


class TurnResponse(BaseModel):
    session_id: str
    status: str
    field_id: str | None = None
    prompt: str | None = None
    choices: list[str] | None = None
    messages: list[str]


class ProfileOut(BaseModel):
    session_id: str
    data_source: str | None = None
    time_period: str | None = None
    active: bool


# ── Endpoints ────────────────────────────────────────────────────


@router.post("/turns", response_model=TurnResponse)
async def deliver_turn(
    body: TurnRequest,
    request: Request,
    dialog: AnalysisDialog = Depends(get_dialog),
):
    """Run the dialog for one turn and return everything it said."""
    session_id = body.session_id or uuid.uuid4().hex
    turn = TurnContext(
        session_id=session_id,
        text=body.text,
        request_id=getattr(request.state, "request_id", None),
    )
    options = {"analysis_profile": body.profile.model_dump()} if body.profile else None

    async with _session_turn(session_id):
        try:
            result = await dialog.run(turn, options)
        except Exception:
            logger.exception(
                "Dialog turn failed",
                extra={"session_id": session_id, "request_id": turn.request_id},
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="The analysis dialog failed to process this turn",
            )

    if isinstance(result, AwaitingInput):
        return TurnResponse(
            session_id=session_id,
            status="awaiting_input",
            field_id=result.field_id,
            prompt=result.prompt.text,
            choices=result.prompt.choices,
            messages=turn.outbox,
        )
    return TurnResponse(session_id=session_id, status="completed", messages=turn.outbox)


@router.get("/sessions/{session_id}/profile", response_model=ProfileOut)
async def session_profile(
    session_id: str,
    dialog: AnalysisDialog = Depends(get_dialog),
):
    """Return the answers collected so far for a session."""
    profile = await profile_store.get(session_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return ProfileOut(
        session_id=session_id,
        data_source=profile.data_source,
        time_period=profile.time_period,
        active=await dialog.is_active(session_id),
    )


@router.delete("/sessions/{session_id}")
async def cancel_session(
    session_id: str,
    dialog: AnalysisDialog = Depends(get_dialog),
) -> dict:
    """Abandon the pending prompt; answers already given are kept."""
    if not await dialog.is_active(session_id):
        return {"session_id": session_id, "cancelled": False}
    async with _session_turn(session_id):
        cancelled = await dialog.cancel(session_id)
    return {"session_id": session_id, "cancelled": cancelled}
