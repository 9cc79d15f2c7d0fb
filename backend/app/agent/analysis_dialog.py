"""
Analysis dialog – a four-step waterfall that fills an AnalysisProfile.

Steps:
    1. initialize_state      – load the profile, or create it (seeded or empty)
    2. prompt_for_source     – ask for the data source unless already known
    3. prompt_for_period     – store the source, ask for the time period
    4. display_report        – store the period, query, report, reset

A step either moves on (``step.next``), suspends on a prompt
(``step.prompt``) or finishes the dialog (``step.end``).  Suspension is
saved in the dialog store; the next turn for the same session validates
the reply against the pending prompt and resumes at the following step.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from app.agent.state import (
    DATA_SOURCE_FIELD,
    TIME_PERIOD_FIELD,
    AnalysisProfile,
    AwaitingInput,
    Completed,
    DialogState,
    DialogStore,
    InMemoryDialogStore,
    ProfileStore,
    PromptRequest,
    TurnContext,
    TurnResult,
)
from app.agent.validators import (
    DataSourceSelectionMode,
    DialogConfigError,
    MinLengthValidator,
    Validator,
    data_source_validator,
)
from app.core.config import settings
from app.core.logging import get_logger
from app.services.observability import get_tracer
from app.services.sql_executor import QueryError, fetch_summary, stream_summaries

logger = get_logger(__name__)

DATA_SOURCE_PROMPT = "What data source would you like to analyze?"
DATA_SOURCE_RETRY = "That was not a valid choice, please select from the available options."
TIME_PERIOD_PROMPT = "What time period do you want to see for the {data_source} data source?"
REPORT_SUMMARY = "Analysis is for the {data_source} for the period {time_period}."


class QueryStrategy(str, Enum):
    """How the report step reads its data."""

    BUFFERED = "buffered"     # first row only
    STREAMING = "streaming"   # every row, one message each


# ── Waterfall plumbing ───────────────────────────────────────────


@dataclass
class _Next:
    value: str | None = None


@dataclass
class _End:
    pass


StepOutcome = _Next | _End | PromptRequest


@dataclass
class WaterfallStep:
    """Context handed to each step function."""

    turn: TurnContext
    index: int
    result: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    trace: Any = None

    @property
    def session_id(self) -> str:
        return self.turn.session_id

    def next(self, value: str | None = None) -> _Next:
        return _Next(value)

    def prompt(self, request: PromptRequest) -> PromptRequest:
        return request

    def end(self) -> _End:
        return _End()


StepFn = Callable[[WaterfallStep], Awaitable[StepOutcome]]


# ── Dialog ───────────────────────────────────────────────────────


class AnalysisDialog:
    """
    Collects a data source and a time period, then reports on them.

    Parameters:
        dialog_id – identifier for this dialog instance (required).
        profile_store – per-session AnalysisProfile storage (required).
        dialog_store – per-session suspension storage; in-memory if omitted.
        selection_mode – choice list or free text for the data source.
        data_sources – candidates for CHOICE mode.
        query_strategy – buffered (first row) or streaming (all rows).
    """

    def __init__(
        self,
        dialog_id: str,
        profile_store: ProfileStore,
        *,
        dialog_store: DialogStore | None = None,
        selection_mode: DataSourceSelectionMode | str | None = None,
        data_sources: list[str] | None = None,
        data_source_min_length: int | None = None,
        time_period_min_length: int | None = None,
        query_strategy: QueryStrategy | str | None = None,
        table: str | None = None,
    ) -> None:
        if not dialog_id:
            raise DialogConfigError("Missing parameter. dialog_id is required")
        if profile_store is None:
            raise DialogConfigError("Missing parameter. profile_store is required")

        self.dialog_id = dialog_id
        self._profiles = profile_store
        self._dialogs = dialog_store if dialog_store is not None else InMemoryDialogStore()

        try:
            self.selection_mode = DataSourceSelectionMode(
                selection_mode or settings.DATA_SOURCE_MODE
            )
            self.query_strategy = QueryStrategy(query_strategy or settings.QUERY_STRATEGY)
        except ValueError as exc:
            raise DialogConfigError(str(exc)) from exc

        self.data_sources = list(
            data_sources if data_sources is not None else settings.data_sources_list
        )
        self.table = table or settings.ANALYSIS_TABLE

        # The order of the steps is the order they run in
        self._steps: list[StepFn] = [
            self._initialize_state,
            self._prompt_for_source,
            self._prompt_for_period,
            self._display_report,
        ]

        self._validators: dict[str, Validator] = {
            DATA_SOURCE_FIELD: data_source_validator(
                self.selection_mode,
                choices=self.data_sources,
                min_length=(
                    settings.DATA_SOURCE_MIN_LENGTH
                    if data_source_min_length is None
                    else data_source_min_length
                ),
            ),
            TIME_PERIOD_FIELD: MinLengthValidator(
                settings.TIME_PERIOD_MIN_LENGTH
                if time_period_min_length is None
                else time_period_min_length,
                label="Time period",
            ),
        }

    # ── Public API ───────────────────────────────────────────

    async def run(
        self,
        turn: TurnContext,
        options: dict[str, Any] | None = None,
    ) -> TurnResult:
        """
        Advance the session by one turn.

        Starts the dialog when nothing is pending (``options`` may carry an
        ``analysis_profile`` seed), otherwise feeds ``turn.text`` to the
        pending prompt.
        """
        tracer = get_tracer()
        trace = tracer.start_trace(
            name=f"{self.dialog_id}.turn",
            session_id=turn.session_id,
            request_id=turn.request_id,
        )

        try:
            outcome = await self._advance(turn, options, trace)
        except Exception as exc:
            tracer.finalize_trace(
                trace,
                output={"status": "error"},
                level="ERROR",
                status_message=f"{type(exc).__name__}: {exc}"[:200],
            )
            raise

        tracer.finalize_trace(
            trace,
            output={"status": "completed" if isinstance(outcome, Completed) else "awaiting_input"},
        )
        return outcome

    async def _advance(
        self,
        turn: TurnContext,
        options: dict[str, Any] | None,
        trace: Any,
    ) -> TurnResult:
        pending = await self._dialogs.get(turn.session_id)
        if pending is None:
            index, result, step_options = 0, None, dict(options or {})
        else:
            validator = self._validators[pending.prompt.field_id]
            verdict = await validator.validate(turn, turn.text)
            if not verdict.accepted:
                get_tracer().log_event(
                    trace,
                    name="reply.rejected",
                    metadata={"field_id": pending.prompt.field_id},
                )
                await turn.send_text(pending.prompt.render(retry=True))
                return AwaitingInput(pending.prompt.field_id, pending.prompt)
            index, result, step_options = pending.step_index + 1, verdict.value, pending.options

        return await self._run_steps(turn, index, result, step_options, trace)

    async def cancel(self, session_id: str) -> bool:
        """Drop the pending prompt for a session.  Returns True if there was one."""
        pending = await self._dialogs.get(session_id)
        await self._dialogs.delete(session_id)
        if pending is not None:
            logger.info("Dialog cancelled", extra={"session_id": session_id})
        return pending is not None

    async def is_active(self, session_id: str) -> bool:
        return await self._dialogs.get(session_id) is not None

    # ── Runner ───────────────────────────────────────────────

    async def _run_steps(
        self,
        turn: TurnContext,
        index: int,
        result: str | None,
        options: dict[str, Any],
        trace: Any,
    ) -> TurnResult:
        while index < len(self._steps):
            step = WaterfallStep(
                turn=turn, index=index, result=result, options=options, trace=trace
            )
            outcome = await self._steps[index](step)

            if isinstance(outcome, PromptRequest):
                await self._dialogs.set(
                    turn.session_id, DialogState(index, outcome, options)
                )
                await turn.send_text(outcome.render())
                logger.debug(
                    "Awaiting %s",
                    outcome.field_id,
                    extra={"session_id": turn.session_id, "step": index},
                )
                return AwaitingInput(outcome.field_id, outcome)

            if isinstance(outcome, _End):
                break

            index += 1
            result = outcome.value

        await self._dialogs.delete(turn.session_id)
        return Completed()

    async def _profile(self, session_id: str) -> AnalysisProfile:
        return await self._profiles.get(session_id) or AnalysisProfile()

    # ── Steps ────────────────────────────────────────────────

    async def _initialize_state(self, step: WaterfallStep) -> StepOutcome:
        """Create the profile on first entry, from the caller's seed if any."""
        if await self._profiles.get(step.session_id) is None:
            seed = step.options.get("analysis_profile")
            await self._profiles.set(step.session_id, AnalysisProfile.from_value(seed))
        return step.next()

    async def _prompt_for_source(self, step: WaterfallStep) -> StepOutcome:
        profile = await self._profile(step.session_id)

        # Everything known already: straight to the report
        if profile.is_complete():
            return await self._report(step)

        if not profile.data_source:
            if self.selection_mode is DataSourceSelectionMode.CHOICE:
                request = PromptRequest(
                    field_id=DATA_SOURCE_FIELD,
                    text=DATA_SOURCE_PROMPT,
                    choices=list(self.data_sources),
                    retry_text=DATA_SOURCE_RETRY,
                )
            else:
                request = PromptRequest(field_id=DATA_SOURCE_FIELD, text=DATA_SOURCE_PROMPT)
            return step.prompt(request)

        return step.next()

    async def _prompt_for_period(self, step: WaterfallStep) -> StepOutcome:
        profile = await self._profile(step.session_id)

        if not profile.data_source and step.result:
            profile.data_source = step.result
            await self._profiles.set(step.session_id, profile)

        if not profile.time_period:
            return step.prompt(
                PromptRequest(
                    field_id=TIME_PERIOD_FIELD,
                    text=TIME_PERIOD_PROMPT.format(data_source=profile.data_source),
                )
            )

        return step.next()

    async def _display_report(self, step: WaterfallStep) -> StepOutcome:
        profile = await self._profile(step.session_id)

        if not profile.time_period and step.result:
            profile.time_period = step.result
            await self._profiles.set(step.session_id, profile)

        return await self._report(step)

    # ── Report ───────────────────────────────────────────────

    async def _report(self, step: WaterfallStep) -> StepOutcome:
        """Send the summary and query data, then reset the profile."""
        profile = await self._profile(step.session_id)
        summary = REPORT_SUMMARY.format(
            data_source=profile.data_source, time_period=profile.time_period
        )
        log_extra = {"session_id": step.session_id, "step": step.index}

        if self.query_strategy is QueryStrategy.STREAMING:
            await step.turn.send_text(summary)
            rows = 0
            async with aclosing(
                stream_summaries(self.table, parent_span=step.trace)
            ) as stream:
                async for row_text in stream:
                    rows += 1
                    await step.turn.send_text(row_text)
            logger.info("Report streamed with %d row(s)", rows, extra=log_extra)
        else:
            try:
                data = await fetch_summary(self.table, parent_span=step.trace)
            except QueryError as exc:
                logger.warning("Report sent without data: %s", exc, extra=log_extra)
                await step.turn.send_text(summary)
            else:
                await step.turn.send_text(f"{summary}\n{data}")
                logger.info("Report sent", extra=log_extra)

        await self._profiles.set(step.session_id, AnalysisProfile())
        return step.end()
