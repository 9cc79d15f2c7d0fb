"""
Reply validators for the analysis dialog.

Each validator checks one raw reply.  On rejection it tells the user why
(through the turn context) before returning, so the dialog only has to
re-ask the same question.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from app.agent.state import TurnContext
from app.core.logging import get_logger

logger = get_logger(__name__)


class DialogConfigError(ValueError):
    """The dialog (or one of its prompts) was built with bad parameters."""


class DataSourceSelectionMode(str, Enum):
    """How the data source is asked for."""

    CHOICE = "choice"   # closed list of candidates
    TEXT = "text"       # free text with a minimum length


@dataclass
class ValidationResult:
    accepted: bool
    value: str | None = None
    message: str | None = None


class Validator(Protocol):
    async def validate(self, turn: TurnContext, reply: str | None) -> ValidationResult: ...


class ChoiceValidator:
    """Accepts a reply only if it names one of the configured candidates."""

    def __init__(self, choices: list[str]) -> None:
        if not choices:
            raise DialogConfigError("ChoiceValidator needs at least one choice")
        self.choices = list(choices)
        self._by_key = {c.strip().casefold(): c for c in self.choices}

    def recognize(self, reply: str | None) -> str | None:
        """Return the canonical candidate matching *reply*, ignoring case."""
        if reply is None:
            return None
        return self._by_key.get(reply.strip().casefold())

    @property
    def rejection_message(self) -> str:
        return f"Data source must be one of the following: {', '.join(self.choices)}"

    async def validate(self, turn: TurnContext, reply: str | None) -> ValidationResult:
        value = self.recognize(reply)
        if value is not None:
            return ValidationResult(accepted=True, value=value)

        message = self.rejection_message
        logger.info(
            "Rejected choice %r", reply, extra={"session_id": turn.session_id}
        )
        await turn.send_text(message)
        return ValidationResult(accepted=False, message=message)


class MinLengthValidator:
    """Accepts any reply whose trimmed length reaches ``min_length``."""

    def __init__(self, min_length: int = 5, *, label: str = "Time period") -> None:
        if min_length < 1:
            raise DialogConfigError("min_length must be a positive integer")
        self.min_length = min_length
        self.label = label

    @property
    def rejection_message(self) -> str:
        return f"{self.label} needs to be at least {self.min_length} characters long."

    async def validate(self, turn: TurnContext, reply: str | None) -> ValidationResult:
        value = (reply or "").strip()
        if len(value) >= self.min_length:
            return ValidationResult(accepted=True, value=value)

        message = self.rejection_message
        logger.info(
            "Rejected %s reply of length %d",
            self.label.lower(),
            len(value),
            extra={"session_id": turn.session_id},
        )
        await turn.send_text(message)
        return ValidationResult(accepted=False, message=message)


def data_source_validator(
    mode: DataSourceSelectionMode,
    *,
    choices: list[str] | None = None,
    min_length: int = 5,
) -> ChoiceValidator | MinLengthValidator:
    """Pick the data-source validator that matches the selection mode."""
    if mode is DataSourceSelectionMode.CHOICE:
        return ChoiceValidator(choices or [])
    return MinLengthValidator(min_length, label="Data source")
