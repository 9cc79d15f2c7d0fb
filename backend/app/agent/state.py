"""
Conversation state for the analysis dialog.

    • AnalysisProfile  – the two slots the dialog fills (data source, period).
    • PromptRequest    – what the dialog asks next and how to re-ask it.
    • DialogState      – where a suspended dialog is waiting.
    • TurnContext      – one host-delivered turn plus its outgoing messages.

The stores below keep per-session state in process memory.  Hosts with
their own persistence only need to provide objects with the same
``get`` / ``set`` / ``delete`` coroutines.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

# Field ids, shared by prompts, validators and the HTTP payloads.
DATA_SOURCE_FIELD = "data_source"
TIME_PERIOD_FIELD = "time_period"


# ── Profile ──────────────────────────────────────────────────────


@dataclass
class AnalysisProfile:
    """Answers collected so far for one conversation."""

    data_source: str | None = None
    time_period: str | None = None

    def is_complete(self) -> bool:
        """True when every slot the dialog fills is non-empty."""
        return bool(self.data_source) and bool(self.time_period)

    def is_empty(self) -> bool:
        return not self.data_source and not self.time_period

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)

    @classmethod
    def from_value(cls, value: Any) -> "AnalysisProfile":
        """Build a profile from a seed: another profile, a dict, or None."""
        if value is None:
            return cls()
        if isinstance(value, AnalysisProfile):
            return copy.copy(value)
        if isinstance(value, dict):
            return cls(
                data_source=value.get("data_source") or None,
                time_period=value.get("time_period") or None,
            )
        raise TypeError(f"Cannot build an AnalysisProfile from {type(value).__name__}")


# ── Prompts & suspension ─────────────────────────────────────────


@dataclass
class PromptRequest:
    """A question for the user plus the field its answer fills."""

    field_id: str
    text: str
    choices: list[str] | None = None
    retry_text: str | None = None

    def render(self, *, retry: bool = False) -> str:
        """Text sent to the user, with the choices listed when there are any."""
        text = self.retry_text if retry and self.retry_text else self.text
        if not self.choices:
            return text
        # Unnumbered: the choice validator accepts the names only
        options = "\n".join(f"- {c}" for c in self.choices)
        return f"{text}\n{options}"


@dataclass
class DialogState:
    """Where a dialog is suspended: the waiting step and its prompt."""

    step_index: int
    prompt: PromptRequest
    options: dict[str, Any] = field(default_factory=dict)


# ── Turn results ─────────────────────────────────────────────────


@dataclass
class AwaitingInput:
    field_id: str
    prompt: PromptRequest


@dataclass
class Completed:
    pass


TurnResult = AwaitingInput | Completed


# ── Turn context ─────────────────────────────────────────────────


@dataclass
class TurnContext:
    """
    One turn delivered by the host.

    ``text`` is the user's reply (``None`` when the host starts the dialog
    without a message).  Everything the dialog says during the turn is
    appended to ``outbox`` in order.
    """

    session_id: str
    text: str | None = None
    request_id: str | None = None
    outbox: list[str] = field(default_factory=list)

    async def send_text(self, text: str) -> None:
        self.outbox.append(text)


# ── Stores ───────────────────────────────────────────────────────


class ProfileStore(Protocol):
    async def get(self, session_id: str) -> AnalysisProfile | None: ...

    async def set(self, session_id: str, profile: AnalysisProfile) -> None: ...

    async def delete(self, session_id: str) -> None: ...


class DialogStore(Protocol):
    async def get(self, session_id: str) -> DialogState | None: ...

    async def set(self, session_id: str, state: DialogState) -> None: ...

    async def delete(self, session_id: str) -> None: ...


class _InMemoryStore:
    """Session-keyed dict that hands out copies, never shared instances."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}

    async def get(self, session_id: str) -> Any:
        value = self._items.get(session_id)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, session_id: str, value: Any) -> None:
        self._items[session_id] = copy.deepcopy(value)

    async def delete(self, session_id: str) -> None:
        self._items.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._items

    def __len__(self) -> int:
        return len(self._items)


class InMemoryProfileStore(_InMemoryStore):
    """Profiles keyed by session id."""


class InMemoryDialogStore(_InMemoryStore):
    """Suspended dialog states keyed by session id."""
