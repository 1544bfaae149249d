import asyncio
import json
import logging
from datetime import date, datetime, timezone

import httpx

from conftest import DEV, LOCAL, token_for
from mindflow_console.environments import Environment
from mindflow_console.panels import (
    BrainDumpForm,
    BrainDumpPanel,
    PanelCoordinator,
    TasksPanel,
    TimezoneSource,
    WellnessPanel,
)

CHECK_IN = {
    "reminderEnabled": True,
    "weekdayStartTimeUtc": "2024-05-06T07:30:00Z",
    "weekdayEndTimeUtc": "2024-05-06T16:00:00Z",
    "weekendStartTimeUtc": "2024-05-11T09:00:00",
    "weekendEndTimeUtc": None,
    "timezoneId": "Asia/Kolkata",
}

TASK = {
    "id": "t1",
    "title": "Morning walk",
    "description": "Around the park",
    "category": 1,
    "date": "2024-05-06",
    "time": "2024-05-06T03:30:00Z",
    "durationMinutes": 20,
    "reminderEnabled": False,
    "repeatType": 1,
    "status": 0,
    "createdBySuggestionEngine": True,
    "isApproved": True,
}

SUGGESTIONS = {
    "userProfile": {"name": "Sam", "currentState": "Overloaded", "emoji": "😵"},
    "keyThemes": ["work", "sleep"],
    "aiSummary": "Too much on the plate.",
    "suggestedActivities": [
        {"task": "Take a walk", "frequency": "Daily", "duration": "20 minutes", "notes": "Outside"},
        {"task": "Journal"},
    ],
    "brainDumpEntryId": "entry-1",
}


def _panels(controller, api, today=lambda: date(2024, 5, 6)):
    wellness = WellnessPanel(controller, api, "UTC")
    tasks = TasksPanel(controller, api, TimezoneSource(api), "UTC", today=today)
    brain_dump = BrainDumpPanel(controller, api, "UTC")
    return wellness, tasks, brain_dump


def test_panels_without_token_do_not_fetch(backend, make_controller, api):
    async def scenario():
        controller = make_controller()
        wellness, tasks, brain_dump = _panels(controller, api)
        # Not started: no token yet
        return (
            await wellness.refresh(),
            await tasks.refresh(),
            await brain_dump.request_suggestions(BrainDumpForm(text="hello")),
        )

    wellness_state, tasks_state, brain_state = asyncio.run(scenario())
    for state in (wellness_state, tasks_state, brain_state):
        assert state.needs_credentials
        assert state.error is None
    assert backend.requests == []


def test_wellness_panel_renders_windows_in_check_in_timezone(backend, make_controller, api):
    backend.route("GET", "/api/wellness/check-in", httpx.Response(200, json=CHECK_IN))

    async def scenario():
        controller = make_controller()
        controller.start()
        await controller.wait_until_settled()
        wellness, _, _ = _panels(controller, api)
        return await wellness.refresh()

    state = asyncio.run(scenario())
    assert state.error is None
    assert state.target_timezone == "Asia/Kolkata"
    weekday, weekend = state.windows
    assert weekday.label == "Weekday focus window"
    assert (weekday.local_start, weekday.local_end) == ("1:00 PM", "9:30 PM")
    assert (weekday.utc_start, weekday.utc_end) == ("07:30 UTC", "16:00 UTC")
    assert weekend.local_start == "2:30 PM"
    assert weekend.local_end == "—"
    assert weekday.reminder_enabled

    request = backend.authenticated_requests()[0]
    assert request.headers["authorization"] == f"Bearer {token_for(LOCAL)}"


def test_wellness_panel_without_check_in(backend, make_controller, api):
    backend.route("GET", "/api/wellness/check-in", httpx.Response(204))

    async def scenario():
        controller = make_controller()
        controller.start()
        await controller.wait_until_settled()
        wellness, _, _ = _panels(controller, api)
        return await wellness.refresh()

    state = asyncio.run(scenario())
    assert state.data is None
    assert state.error is None
    assert state.message.startswith("No wellness check-in yet")


def test_tasks_panel_formats_start_in_check_in_timezone(backend, make_controller, api):
    backend.route("GET", "/api/wellness/check-in", httpx.Response(200, json=CHECK_IN))
    backend.route("GET", "/api/tasks", httpx.Response(200, json=[TASK]))

    async def scenario():
        controller = make_controller()
        controller.start()
        await controller.wait_until_settled()
        _, tasks, _ = _panels(controller, api)
        await tasks.load()
        return tasks

    tasks = asyncio.run(scenario())
    assert tasks.state.error is None
    assert tasks.display_timezone == "Asia/Kolkata"
    (view,) = tasks.task_views()
    assert view.start == "9:00 AM"
    assert view.status == "Pending"
    assert view.repeat == "Daily"
    assert view.origin == "AI Suggested"

    task_request = [r for r in backend.requests if r.url.path == "/api/tasks"][0]
    assert task_request.url.params["date"] == "2024-05-06"


def test_wellness_failure_only_degrades_task_timezone(backend, make_controller, api):
    backend.route("GET", "/api/wellness/check-in", httpx.Response(500, text="wellness exploded"))
    backend.route("GET", "/api/tasks", httpx.Response(200, json=[TASK]))

    async def scenario():
        controller = make_controller()
        controller.start()
        await controller.wait_until_settled()
        wellness, tasks, brain_dump = _panels(controller, api)
        coordinator = PanelCoordinator(controller, wellness, tasks, brain_dump)
        await coordinator.refresh_all()
        return wellness, tasks

    wellness, tasks = asyncio.run(scenario())
    assert wellness.state.error == "wellness exploded"
    assert tasks.state.error is None
    assert tasks.state.timezone_id is None
    assert tasks.display_timezone == "UTC"
    assert tasks.task_views()[0].start == "3:30 AM"


def test_tasks_panel_error_and_empty_day(backend, make_controller, api):
    responses = iter([httpx.Response(502), httpx.Response(200, json=[])])
    backend.route("GET", "/api/tasks", lambda request: next(responses))
    backend.route("GET", "/api/wellness/check-in", httpx.Response(204))

    async def scenario():
        controller = make_controller()
        controller.start()
        await controller.wait_until_settled()
        _, tasks, _ = _panels(controller, api)
        failed = await tasks.refresh()
        empty = await tasks.select_date("2024-05-07")
        return failed, empty

    failed, empty = asyncio.run(scenario())
    assert failed.error == "Request failed with 502"
    assert failed.tasks == []
    assert empty.error is None
    assert empty.selected_date == "2024-05-07"
    assert empty.message == "No tasks found for 2024-05-07."


def test_tasks_result_for_previous_environment_is_discarded(backend, make_controller, api):
    async def scenario():
        gate = asyncio.Event()

        async def slow_tasks(request):
            await gate.wait()
            return httpx.Response(200, json=[TASK])

        backend.route("GET", "/api/tasks", slow_tasks)
        controller = make_controller()
        controller.start()
        await controller.wait_until_settled()
        _, tasks, _ = _panels(controller, api)
        pending = asyncio.create_task(tasks.refresh())
        await asyncio.sleep(0.01)
        controller.select_environment(Environment.DEV)
        await controller.wait_until_settled()
        gate.set()
        await pending
        return tasks

    tasks = asyncio.run(scenario())
    assert tasks.state.tasks == []


def test_coordinator_refetches_on_token_change_and_clears_without_token(backend, make_controller, api):
    backend.route("GET", "/api/wellness/check-in", httpx.Response(200, json=CHECK_IN))
    backend.route("GET", "/api/tasks", lambda request: httpx.Response(200, json=[TASK]))

    async def scenario():
        controller = make_controller()
        wellness, tasks, brain_dump = _panels(controller, api)
        coordinator = PanelCoordinator(controller, wellness, tasks, brain_dump)
        controller.start()
        assert wellness.state.needs_credentials
        await controller.wait_until_settled()
        await coordinator.wait_idle()
        first = len(backend.authenticated_requests())

        controller.select_environment(Environment.DEV)
        cleared = tasks.state.needs_credentials
        await controller.wait_until_settled()
        await coordinator.wait_idle()
        await coordinator.close()
        return first, cleared, wellness, tasks

    first, cleared, wellness, tasks = asyncio.run(scenario())
    assert first == 3  # wellness panel, tasks, tasks timezone
    assert cleared
    assert wellness.state.data.timezone_id == "Asia/Kolkata"
    assert len(tasks.state.tasks) == 1
    for request in backend.authenticated_requests():
        assert request.headers["authorization"] == f"Bearer {token_for(backend.origin_of(request))}"
    assert {backend.origin_of(r) for r in backend.authenticated_requests()} == {LOCAL, DEV}


def test_brain_dump_requires_text(backend, make_controller, api):
    async def scenario():
        controller = make_controller()
        controller.start()
        controller.set_token("pasted")
        _, _, brain_dump = _panels(controller, api)
        return await brain_dump.request_suggestions(BrainDumpForm(text="   "))

    state = asyncio.run(scenario())
    assert state.error == "Write at least a short brain dump."
    assert backend.authenticated_requests() == []


def test_brain_dump_rejects_out_of_range_scores(backend, make_controller, api):
    async def scenario():
        controller = make_controller()
        controller.start()
        controller.set_token("pasted")
        _, _, brain_dump = _panels(controller, api)
        return await brain_dump.request_suggestions(BrainDumpForm(text="busy", mood=11))

    state = asyncio.run(scenario())
    assert state.error.startswith("Scores must be between 0 and 10")
    assert backend.authenticated_requests() == []


def test_brain_dump_suggestions_then_add_to_calendar(backend, make_controller, api):
    backend.route("POST", "/brain-dump/suggestions", httpx.Response(200, json=SUGGESTIONS))
    backend.route("POST", "/brain-dump/add-to-calendar", httpx.Response(200, json={
        "message": "Task added",
        "taskId": "task-9",
        "task": {
            "title": "Journal",
            "description": "",
            "category": 0,
            "date": "2024-05-06",
            "time": "2024-05-06T18:15:00Z",
            "durationMinutes": 15,
            "repeatType": 0,
            "sourceBrainDumpEntryId": "entry-1",
        },
    }))

    async def scenario():
        controller = make_controller()
        controller.start()
        controller.set_token("pasted")
        _, _, brain_dump = _panels(controller, api)
        suggested = await brain_dump.request_suggestions(
            BrainDumpForm(text="  too much  ", context="", mood=3, stress=8)
        )
        added = await brain_dump.add_to_calendar(1)
        return suggested, added

    suggested, added = asyncio.run(scenario())
    assert suggested.message == "Received 2 suggestions"
    assert added.error is None
    assert added.calendar_result.task_id == "task-9"
    assert added.message == "Scheduled for 2024-05-06 6:15 PM (15 minutes)"
    assert added.adding_task_key is None

    suggestion_request, calendar_request = backend.authenticated_requests()
    assert json.loads(suggestion_request.content) == {"text": "too much", "mood": 3, "stress": 8}
    assert json.loads(calendar_request.content) == {
        "task": "Journal",
        "frequency": "Once",
        "duration": "15 minutes",
        "brainDumpEntryId": "entry-1",
        "reminderEnabled": False,
    }
    assert calendar_request.headers["authorization"] == "Bearer pasted"


def test_add_to_calendar_needs_entry_id(backend, make_controller, api):
    payload = dict(SUGGESTIONS, brainDumpEntryId=None)
    backend.route("POST", "/brain-dump/suggestions", httpx.Response(200, json=payload))

    async def scenario():
        controller = make_controller()
        controller.start()
        controller.set_token("pasted")
        _, _, brain_dump = _panels(controller, api)
        await brain_dump.request_suggestions(BrainDumpForm(text="busy"))
        return await brain_dump.add_to_calendar(0)

    state = asyncio.run(scenario())
    assert state.error == "brainDumpEntryId missing in response; cannot link task."
    assert len(backend.authenticated_requests()) == 1


def test_brain_dump_failure_clears_previous_response(backend, make_controller, api):
    responses = iter([httpx.Response(200, json=SUGGESTIONS), httpx.Response(500, text="model offline")])
    backend.route("POST", "/brain-dump/suggestions", lambda request: next(responses))

    async def scenario():
        controller = make_controller()
        controller.start()
        controller.set_token("pasted")
        _, _, brain_dump = _panels(controller, api)
        await brain_dump.request_suggestions(BrainDumpForm(text="first"))
        return await brain_dump.request_suggestions(BrainDumpForm(text="second"))

    state = asyncio.run(scenario())
    assert state.error == "model offline"
    assert state.response is None
    assert state.message is None


def test_malformed_check_in_timezone_falls_back_to_default(backend, make_controller, api):
    backend.route("GET", "/api/wellness/check-in", httpx.Response(200, json={**CHECK_IN, "timezoneId": "America"}))
    backend.route("GET", "/api/tasks", httpx.Response(200, json=[TASK]))

    async def scenario():
        controller = make_controller()
        controller.start()
        await controller.wait_until_settled()
        wellness, tasks, brain_dump = _panels(controller, api)
        coordinator = PanelCoordinator(controller, wellness, tasks, brain_dump)
        await coordinator.refresh_all()
        return wellness, tasks

    wellness, tasks = asyncio.run(scenario())
    assert wellness.state.error is None
    assert wellness.state.loading is False
    assert wellness.state.windows[0].local_start == "7:30 AM"
    assert tasks.state.error is None
    assert tasks.task_views()[0].start == "3:30 AM"


def test_unexpected_refresh_error_is_logged_and_stops_loading(backend, make_controller, api, caplog):
    def explode(request):
        raise RuntimeError("decoder bug")

    backend.route("GET", "/api/wellness/check-in", explode)
    backend.route("GET", "/api/tasks", httpx.Response(200, json=[TASK]))

    async def scenario():
        controller = make_controller()
        wellness, tasks, brain_dump = _panels(controller, api)
        coordinator = PanelCoordinator(controller, wellness, tasks, brain_dump)
        controller.start()
        await controller.wait_until_settled()
        await coordinator.wait_idle()
        await coordinator.close()
        return wellness, tasks

    with caplog.at_level(logging.ERROR, logger="mindflow_console.panels"):
        wellness, tasks = asyncio.run(scenario())

    assert wellness.state.loading is False
    assert len(tasks.state.tasks) == 1
    assert tasks.state.loading is False
    failures = [r for r in caplog.records if r.getMessage() == "Panel refresh failed"]
    assert len(failures) == 1
    assert isinstance(failures[0].exc_info[1], RuntimeError)


def test_tasks_panel_defaults_to_utc_date(make_controller, api):
    controller = make_controller()
    tasks = TasksPanel(controller, api, TimezoneSource(api), "UTC")
    assert tasks.state.selected_date == datetime.now(timezone.utc).date().isoformat()
