# src/mindflow_console/main.py

import logging
import typing
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from .api_client import MindflowApiClient
from .auth_utils import Authenticator
from .config import CONFIG_FILE_DIR, Settings, get_settings
from .environments import Environment, base_url_for, environment_for, sanitize_docs_url
from .logging_setup import configure_logging
from .panels import (
    BrainDumpForm,
    BrainDumpPanel,
    PanelCoordinator,
    TasksPanel,
    TimezoneSource,
    WellnessPanel,
)
from .session_controller import SessionController
from .session_data import Credentials, SessionSnapshot, mask_token
from .session_store import PersistedSessionStore, build_session_store

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=CONFIG_FILE_DIR / "templates")

TABS = [
    ("wellness", "Wellness Slots", "Inspect stored windows"),
    ("brain", "Brain Dump Tasks", "Generate & schedule"),
    ("tasks", "Tasks", "View saved tasks by date"),
]


class EnvironmentSelection(BaseModel):
    environment: typing.Optional[Environment] = None
    base_url: typing.Optional[str] = None


class TokenUpdate(BaseModel):
    token: str = ""


class SuggestionSelection(BaseModel):
    index: int


def session_payload(session: SessionSnapshot) -> dict:
    environment = environment_for(session.selected_base_url)
    return {
        "status": session.status.value,
        "selected_base_url": session.selected_base_url,
        "environment": environment.value if environment else None,
        "token": mask_token(session.token) if session.token else None,
        "token_owner_base_url": session.token_owner_base_url,
        "last_error": session.last_error,
    }


def create_app(
        settings: typing.Optional[Settings] = None,
        store: typing.Optional[PersistedSessionStore] = None,
        transport: typing.Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Builds the console. Tests pass their own settings, store and a mock transport
    standing in for the Mindflow backend.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        configure_logging(cfg.MINDFLOW_LOG_LEVEL)
        logger.info("--- Mindflow Console Starting Up ---")
        logger.info("Default API base: %s", cfg.DEFAULT_BASE_URL)
        logger.info("Sign-in identity: %s", cfg.MINDFLOW_SIGNIN_EMAIL)
        logger.info("TLS verification: %s", "on" if cfg.MINDFLOW_VERIFY_TLS else "off")

        session_store = store if store is not None else build_session_store(cfg.MINDFLOW_SESSION_FILE)
        authenticator = Authenticator(
            timeout=cfg.MINDFLOW_HTTP_TIMEOUT_SECONDS, verify=cfg.MINDFLOW_VERIFY_TLS, transport=transport
        )
        api = MindflowApiClient(
            timeout=cfg.MINDFLOW_HTTP_TIMEOUT_SECONDS, verify=cfg.MINDFLOW_VERIFY_TLS, transport=transport
        )
        controller = SessionController(
            store=session_store,
            authenticator=authenticator,
            credentials=Credentials(
                user_name_or_email=cfg.MINDFLOW_SIGNIN_EMAIL, password=cfg.MINDFLOW_SIGNIN_PASSWORD
            ),
            default_base_url=cfg.DEFAULT_BASE_URL,
        )
        tz = cfg.MINDFLOW_DEFAULT_TIMEZONE
        coordinator = PanelCoordinator(
            controller,
            wellness=WellnessPanel(controller, api, tz),
            tasks=TasksPanel(controller, api, TimezoneSource(api), tz),
            brain_dump=BrainDumpPanel(controller, api, tz),
        )

        app.state.settings = cfg
        app.state.controller = controller
        app.state.coordinator = coordinator

        session = controller.start()
        logger.info("Session status after start: %s (%s)", session.status.value, session.selected_base_url)
        try:
            yield
        finally:
            await coordinator.close()
            await controller.close()
            logger.info("--- Mindflow Console Shut Down ---")

    app = FastAPI(
        title="Mindflow Console",
        description="Internal console for wellness windows, brain dump suggestions and tasks.",
        version="0.1.0",
        lifespan=lifespan,
    )

    def controller_of(request: Request) -> SessionController:
        return request.app.state.controller

    def coordinator_of(request: Request) -> PanelCoordinator:
        return request.app.state.coordinator

    async def settle(request: Request, wait: bool) -> SessionSnapshot:
        controller = controller_of(request)
        if wait:
            await controller.wait_until_settled()
            await coordinator_of(request).wait_idle()
        return controller.snapshot()

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # --- Session ---

    @app.get("/api/console/session")
    async def get_session(request: Request, wait: bool = False):
        return session_payload(await settle(request, wait))

    @app.post("/api/console/session/environment")
    async def select_environment(request: Request, selection: EnvironmentSelection, wait: bool = False):
        controller = controller_of(request)
        if selection.environment is not None:
            controller.select_environment(selection.environment)
        elif selection.base_url and selection.base_url.strip():
            controller.select_base_url(sanitize_docs_url(selection.base_url.strip()))
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Provide an environment name or a base URL.",
            )
        return session_payload(await settle(request, wait))

    @app.post("/api/console/session/token")
    async def set_token(request: Request, update: TokenUpdate, wait: bool = False):
        controller_of(request).set_token(update.token)
        return session_payload(await settle(request, wait))

    @app.post("/api/console/session/retry")
    async def retry_sign_in(request: Request, wait: bool = False):
        controller_of(request).retry()
        return session_payload(await settle(request, wait))

    @app.post("/api/console/session/sign-out")
    async def sign_out(request: Request, wait: bool = False):
        controller_of(request).sign_out()
        return session_payload(await settle(request, wait))

    # --- Panels ---

    @app.get("/api/console/wellness")
    async def wellness_panel(request: Request, refresh: bool = False):
        panel = coordinator_of(request).wellness
        if refresh:
            await panel.refresh()
        return panel.state.model_dump(mode="json")

    @app.get("/api/console/tasks")
    async def tasks_panel(request: Request, date: typing.Optional[str] = None, refresh: bool = False):
        panel = coordinator_of(request).tasks
        if date and date != panel.state.selected_date:
            try:
                await panel.select_date(date)
            except ValueError:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid date: {date}")
        elif refresh:
            await panel.load()
        payload = panel.state.model_dump(mode="json", exclude={"tasks"})
        payload["display_timezone"] = panel.display_timezone
        payload["tasks"] = [view.model_dump(mode="json") for view in panel.task_views()]
        return payload

    @app.post("/api/console/brain-dump/suggestions")
    async def brain_dump_suggestions(request: Request, form: BrainDumpForm):
        panel = coordinator_of(request).brain_dump
        state = await panel.request_suggestions(form)
        return state.model_dump(mode="json")

    @app.post("/api/console/brain-dump/add-to-calendar")
    async def brain_dump_add_to_calendar(request: Request, selection: SuggestionSelection):
        panel = coordinator_of(request).brain_dump
        state = await panel.add_to_calendar(selection.index)
        return state.model_dump(mode="json")

    # --- Console page ---

    @app.get("/", response_class=HTMLResponse)
    async def read_root(request: Request, tab: str = "wellness", date: typing.Optional[str] = None):
        coordinator = coordinator_of(request)
        session = controller_of(request).snapshot()
        if tab not in {t[0] for t in TABS}:
            tab = "wellness"
        if tab == "tasks" and date and date != coordinator.tasks.state.selected_date:
            try:
                await coordinator.tasks.select_date(date)
            except ValueError:
                logger.info("Ignoring invalid date %r", date)
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "session": session,
                "masked_token": mask_token(session.token) if session.token else "",
                "environments": [(env, base_url_for(env)) for env in Environment],
                "tabs": TABS,
                "active_tab": tab,
                "wellness": coordinator.wellness.state,
                "tasks": coordinator.tasks.state,
                "task_views": coordinator.tasks.task_views(),
                "display_timezone": coordinator.tasks.display_timezone,
                "brain_dump": coordinator.brain_dump.state,
            },
        )

    return app


app = create_app()
