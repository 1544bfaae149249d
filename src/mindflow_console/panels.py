# src/mindflow_console/panels.py

import asyncio
import logging
import typing
from datetime import date as date_cls, datetime, timezone

from pydantic import BaseModel, Field, ValidationError

from .api_client import MindflowApiClient
from .errors import ConsoleError, MissingCredentialPrecondition
from .formatting import (
    format_local_datetime,
    format_local_time,
    format_utc,
    repeat_label,
    status_label,
)
from .models import (
    AddTaskResult,
    AddToCalendarRequest,
    BrainDumpRequest,
    BrainDumpResponse,
    TaskItem,
    WellnessCheckIn,
)
from .session_controller import SessionController
from .session_data import SessionSnapshot

logger = logging.getLogger(__name__)


class PanelState(BaseModel):
    loading: bool = False
    error: typing.Optional[str] = None
    needs_credentials: bool = False
    message: typing.Optional[str] = None


class FocusWindow(BaseModel):
    label: str
    local_start: str
    local_end: str
    utc_start: str
    utc_end: str
    reminder_enabled: bool = False


class WellnessPanelState(PanelState):
    data: typing.Optional[WellnessCheckIn] = None
    target_timezone: str = "UTC"
    windows: typing.List[FocusWindow] = Field(default_factory=list)


class TaskView(BaseModel):
    id: str
    title: str
    description: typing.Optional[str] = None
    status: str
    start: str
    duration_minutes: int
    repeat: str
    origin: str


class TasksPanelState(PanelState):
    selected_date: str
    tasks: typing.List[TaskItem] = Field(default_factory=list)
    timezone_id: typing.Optional[str] = None


class BrainDumpForm(BaseModel):
    text: str = ""
    context: str = ""
    mood: typing.Optional[float] = None
    stress: typing.Optional[float] = None
    purpose: typing.Optional[float] = None


class BrainDumpPanelState(PanelState):
    response: typing.Optional[BrainDumpResponse] = None
    calendar_result: typing.Optional[AddTaskResult] = None
    adding_task_key: typing.Optional[str] = None


def _raise_first(results) -> None:
    # Siblings run to completion before the first failure surfaces
    for result in results:
        if isinstance(result, BaseException):
            raise result


def _utc_today() -> date_cls:
    return datetime.now(timezone.utc).date()


class _SessionBoundPanel:
    """
    Shared fetch bookkeeping: a panel only applies the result of its latest fetch,
    and only while the session still has the token the fetch was made with.
    """

    def __init__(self, controller: SessionController, api: MindflowApiClient, default_timezone: str = "UTC"):
        self._controller = controller
        self._api = api
        self._default_timezone = default_timezone
        self._fetch_generation = 0

    def _session(self) -> SessionSnapshot:
        session = self._controller.snapshot()
        if not session.has_token:
            raise MissingCredentialPrecondition()
        return session

    def _next_fetch(self) -> int:
        self._fetch_generation += 1
        return self._fetch_generation

    def _settle_loading(self, generation: int) -> None:
        # An unexpected error must not leave the latest fetch spinning
        if generation == self._fetch_generation and self.state.loading:
            self.state = self.state.model_copy(update={"loading": False})

    def _is_stale(self, generation: int, session: SessionSnapshot) -> bool:
        current = self._controller.snapshot()
        return (
            generation != self._fetch_generation
            or current.token != session.token
            or current.selected_base_url != session.selected_base_url
        )


class WellnessPanel(_SessionBoundPanel):
    NO_TOKEN_MESSAGE = "Paste a bearer token to call the API."

    def __init__(self, controller: SessionController, api: MindflowApiClient, default_timezone: str = "UTC"):
        super().__init__(controller, api, default_timezone)
        self.state = WellnessPanelState(target_timezone=default_timezone)

    def clear(self) -> None:
        self._next_fetch()
        self.state = WellnessPanelState(
            needs_credentials=True,
            message=self.NO_TOKEN_MESSAGE,
            target_timezone=self._default_timezone,
        )

    async def refresh(self) -> WellnessPanelState:
        try:
            session = self._session()
        except MissingCredentialPrecondition:
            self.clear()
            return self.state

        generation = self._next_fetch()
        self.state = self.state.model_copy(update={"loading": True, "error": None, "needs_credentials": False, "message": None})
        try:
            return await self._fetch(generation, session)
        finally:
            self._settle_loading(generation)

    async def _fetch(self, generation: int, session: SessionSnapshot) -> WellnessPanelState:
        try:
            data = await self._api.get_wellness_check_in(session.selected_base_url, session.token)
        except ConsoleError as e:
            if self._is_stale(generation, session):
                return self.state
            self.state = WellnessPanelState(
                error=getattr(e, "detail", None) or "Failed to load wellness data",
                target_timezone=self._default_timezone,
            )
            return self.state

        if self._is_stale(generation, session):
            return self.state
        self.state = self._build_state(data)
        return self.state

    def _build_state(self, data: typing.Optional[WellnessCheckIn]) -> WellnessPanelState:
        if data is None:
            return WellnessPanelState(
                target_timezone=self._default_timezone,
                message="No wellness check-in yet. Once the user completes one, slots will appear here.",
            )
        target = data.timezone_id or self._default_timezone
        windows = [
            FocusWindow(
                label=label,
                local_start=format_local_time(start, target, self._default_timezone),
                local_end=format_local_time(end, target, self._default_timezone),
                utc_start=format_utc(start),
                utc_end=format_utc(end),
                reminder_enabled=bool(data.reminder_enabled),
            )
            for label, start, end in (
                ("Weekday focus window", data.weekday_start_time_utc, data.weekday_end_time_utc),
                ("Weekend focus window", data.weekend_start_time_utc, data.weekend_end_time_utc),
            )
        ]
        return WellnessPanelState(data=data, target_timezone=target, windows=windows)


class TimezoneSource:
    """Best-effort lookup of the check-in timezone; never raises."""

    def __init__(self, api: MindflowApiClient):
        self._api = api

    async def resolve(self, base_url: str, token: str) -> typing.Optional[str]:
        try:
            check_in = await self._api.get_wellness_check_in(base_url, token)
        except ConsoleError as e:
            logger.warning("Failed to fetch wellness data for timezone: %s", e)
            return None
        if check_in is None:
            return None
        return check_in.timezone_id or None


class TasksPanel(_SessionBoundPanel):
    NO_TOKEN_MESSAGE = "Provide a bearer token to call the API."

    def __init__(
            self,
            controller: SessionController,
            api: MindflowApiClient,
            timezone_source: TimezoneSource,
            default_timezone: str = "UTC",
            today: typing.Optional[typing.Callable[[], date_cls]] = None,
    ):
        super().__init__(controller, api, default_timezone)
        self._timezone_source = timezone_source
        self._today = today or _utc_today
        self._timezone_generation = 0
        self.state = TasksPanelState(selected_date=self._today().isoformat())

    @property
    def display_timezone(self) -> str:
        return self.state.timezone_id or self._default_timezone

    def task_views(self) -> typing.List[TaskView]:
        return [
            TaskView(
                id=task.id,
                title=task.title,
                description=task.description,
                status=status_label(task.status),
                start=format_local_time(task.time, self.display_timezone, self._default_timezone) if task.time else "",
                duration_minutes=task.duration_minutes,
                repeat=repeat_label(task.repeat_type),
                origin="AI Suggested" if task.created_by_suggestion_engine else "Manual",
            )
            for task in self.state.tasks
        ]

    def clear(self) -> None:
        self._next_fetch()
        self._timezone_generation += 1
        self.state = TasksPanelState(
            selected_date=self.state.selected_date,
            needs_credentials=True,
            message=self.NO_TOKEN_MESSAGE,
        )

    async def select_date(self, value: typing.Union[str, date_cls]) -> TasksPanelState:
        selected = value if isinstance(value, str) else value.isoformat()
        # Raises ValueError on anything that is not yyyy-MM-dd
        date_cls.fromisoformat(selected)
        if selected != self.state.selected_date:
            self.state = self.state.model_copy(update={"selected_date": selected})
        return await self.refresh()

    async def load(self) -> TasksPanelState:
        """Fetches tasks and the display timezone side by side."""
        _raise_first(await asyncio.gather(self.refresh(), self.refresh_timezone(), return_exceptions=True))
        return self.state

    async def refresh(self) -> TasksPanelState:
        try:
            session = self._session()
        except MissingCredentialPrecondition:
            self.clear()
            return self.state

        generation = self._next_fetch()
        self.state = self.state.model_copy(update={"loading": True, "error": None, "needs_credentials": False, "message": None})
        try:
            return await self._fetch(generation, session)
        finally:
            self._settle_loading(generation)

    async def _fetch(self, generation: int, session: SessionSnapshot) -> TasksPanelState:
        try:
            tasks = await self._api.get_tasks(session.selected_base_url, session.token, self.state.selected_date)
        except ConsoleError as e:
            if self._is_stale(generation, session):
                return self.state
            self.state = self.state.model_copy(update={
                "loading": False,
                "error": getattr(e, "detail", None) or "Failed to fetch tasks",
                "tasks": [],
            })
            return self.state

        if self._is_stale(generation, session):
            return self.state
        message = None if tasks else f"No tasks found for {self.state.selected_date}."
        self.state = self.state.model_copy(update={"loading": False, "tasks": tasks, "message": message})
        return self.state

    async def refresh_timezone(self) -> typing.Optional[str]:
        session = self._controller.snapshot()
        if not session.has_token:
            return None
        self._timezone_generation += 1
        generation = self._timezone_generation
        timezone_id = await self._timezone_source.resolve(session.selected_base_url, session.token)

        current = self._controller.snapshot()
        if (
                generation != self._timezone_generation
                or current.token != session.token
                or current.selected_base_url != session.selected_base_url
        ):
            return self.state.timezone_id
        self.state = self.state.model_copy(update={"timezone_id": timezone_id})
        return timezone_id


class BrainDumpPanel(_SessionBoundPanel):
    NO_TOKEN_MESSAGE = "Paste a bearer token first."

    def __init__(self, controller: SessionController, api: MindflowApiClient, default_timezone: str = "UTC"):
        super().__init__(controller, api, default_timezone)
        self.state = BrainDumpPanelState()

    def reset(self) -> None:
        self._next_fetch()
        self.state = BrainDumpPanelState()

    @property
    def suggestions(self):
        return self.state.response.suggested_activities if self.state.response else []

    @staticmethod
    def build_request(form: BrainDumpForm) -> BrainDumpRequest:
        return BrainDumpRequest(
            text=form.text.strip(),
            context=form.context.strip() or None,
            mood=form.mood,
            stress=form.stress,
            purpose=form.purpose,
        )

    async def request_suggestions(self, form: BrainDumpForm) -> BrainDumpPanelState:
        try:
            session = self._session()
        except MissingCredentialPrecondition:
            self.state = BrainDumpPanelState(needs_credentials=True, message=self.NO_TOKEN_MESSAGE)
            return self.state
        if not form.text.strip():
            self.state = self.state.model_copy(update={"error": "Write at least a short brain dump.", "message": None})
            return self.state
        try:
            request = self.build_request(form)
        except ValidationError as e:
            self.state = self.state.model_copy(
                update={"error": f"Scores must be between 0 and 10 ({e.error_count()} invalid)", "message": None}
            )
            return self.state

        generation = self._next_fetch()
        self.state = self.state.model_copy(update={
            "loading": True, "error": None, "message": None, "needs_credentials": False, "calendar_result": None,
        })
        try:
            return await self._fetch_suggestions(generation, session, request)
        finally:
            self._settle_loading(generation)

    async def _fetch_suggestions(
            self, generation: int, session: SessionSnapshot, request: BrainDumpRequest
    ) -> BrainDumpPanelState:
        try:
            response = await self._api.request_suggestions(session.selected_base_url, session.token, request)
        except ConsoleError as e:
            if self._is_stale(generation, session):
                return self.state
            self.state = BrainDumpPanelState(error=getattr(e, "detail", None) or "Failed to fetch task suggestions")
            return self.state

        if self._is_stale(generation, session):
            return self.state
        self.state = BrainDumpPanelState(
            response=response,
            message=f"Received {len(response.suggested_activities)} suggestions",
        )
        return self.state

    async def add_to_calendar(self, index: int) -> BrainDumpPanelState:
        try:
            session = self._session()
        except MissingCredentialPrecondition:
            self.state = self.state.model_copy(update={"needs_credentials": True, "message": self.NO_TOKEN_MESSAGE})
            return self.state
        response = self.state.response
        if response is None or not response.brain_dump_entry_id:
            self.state = self.state.model_copy(
                update={"error": "brainDumpEntryId missing in response; cannot link task.", "message": None}
            )
            return self.state
        if not 0 <= index < len(response.suggested_activities):
            self.state = self.state.model_copy(update={"error": f"No suggestion at position {index}.", "message": None})
            return self.state

        suggestion = response.suggested_activities[index]
        request = AddToCalendarRequest(
            task=suggestion.task,
            frequency=suggestion.frequency or "Once",
            duration=suggestion.duration or "15 minutes",
            notes=suggestion.notes,
            brain_dump_entry_id=response.brain_dump_entry_id,
            reminder_enabled=False,
        )

        generation = self._next_fetch()
        self.state = self.state.model_copy(update={
            "adding_task_key": f"{suggestion.task}-{index}",
            "error": None,
            "message": None,
            "calendar_result": None,
        })
        try:
            result = await self._api.add_to_calendar(session.selected_base_url, session.token, request)
        except ConsoleError as e:
            if self._is_stale(generation, session):
                return self.state
            self.state = self.state.model_copy(update={
                "adding_task_key": None,
                "error": getattr(e, "detail", None) or "Failed to add task to calendar",
            })
            return self.state

        if self._is_stale(generation, session):
            return self.state
        when = format_local_datetime(result.task.time, None, self._default_timezone)
        self.state = self.state.model_copy(update={
            "adding_task_key": None,
            "calendar_result": result,
            "message": f"Scheduled for {when} ({result.task.duration_minutes} minutes)",
        })
        return self.state


class PanelCoordinator:
    """
    Re-fetches the data panels whenever the session's token or backend changes.
    """

    def __init__(
            self,
            controller: SessionController,
            wellness: WellnessPanel,
            tasks: TasksPanel,
            brain_dump: BrainDumpPanel,
    ):
        self.wellness = wellness
        self.tasks = tasks
        self.brain_dump = brain_dump
        self._last_key: typing.Optional[tuple] = None
        self._pending: typing.Set[asyncio.Task] = set()
        self._unsubscribe = controller.subscribe(self._on_session_change)

    def _on_session_change(self, session: SessionSnapshot) -> None:
        key = (session.selected_base_url, session.token)
        if key == self._last_key:
            return
        self._last_key = key
        self.brain_dump.reset()
        if not session.has_token:
            self.wellness.clear()
            self.tasks.clear()
            return
        task = asyncio.get_running_loop().create_task(self.refresh_all())
        self._pending.add(task)
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Panel refresh failed", exc_info=error)

    async def refresh_all(self) -> None:
        _raise_first(await asyncio.gather(self.wellness.refresh(), self.tasks.load(), return_exceptions=True))

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.wait(set(self._pending))

    async def close(self) -> None:
        self._unsubscribe()
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.wait(set(self._pending))
