# src/mindflow_console/session_controller.py

import asyncio
import logging
import typing

from .auth_utils import Authenticator
from .environments import Environment, base_url_for
from .errors import SignInError
from .session_data import (
    Credentials,
    PersistedSessionRecord,
    SessionSnapshot,
    SessionStatus,
    mask_token,
)
from .session_store import PersistedSessionStore

logger = logging.getLogger(__name__)

SessionListener = typing.Callable[[SessionSnapshot], None]


class SessionController:
    """
    Owns the single operator session: which backend is selected, the bearer token
    and the base URL that token was issued for.

    Every change to one of those three inputs ends in a call to _evaluate(), which
    decides whether a sign-in is needed. Must be driven from the event loop that
    runs the sign-in tasks.
    """

    def __init__(
            self,
            store: PersistedSessionStore,
            authenticator: Authenticator,
            credentials: Credentials,
            default_base_url: str,
    ):
        self._store = store
        self._authenticator = authenticator
        self._credentials = credentials
        self._default_base_url = default_base_url

        self._selected_base_url: typing.Optional[str] = None
        self._token: typing.Optional[str] = None
        self._token_owner_base_url: typing.Optional[str] = None
        self._status = SessionStatus.IDLE
        self._last_error: typing.Optional[str] = None

        self._sign_in_task: typing.Optional[asyncio.Task] = None
        self._generation = 0
        self._listeners: typing.List[SessionListener] = []

    # --- Read side ---

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            selected_base_url=self._selected_base_url,
            token=self._token,
            token_owner_base_url=self._token_owner_base_url,
            status=self._status,
            last_error=self._last_error if self._status == SessionStatus.FAILED else None,
        )

    def subscribe(self, listener: SessionListener) -> typing.Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Operations ---

    def start(self) -> SessionSnapshot:
        record = self._store.load()
        self._selected_base_url = record.selected_base_url or self._default_base_url
        if record.token and record.token_owner_base_url == self._selected_base_url:
            self._token = record.token
            self._token_owner_base_url = record.token_owner_base_url
            self._status = SessionStatus.READY
            logger.info(
                "SESSION: restored token %s for %s", mask_token(self._token), self._selected_base_url
            )
        else:
            if record.token:
                logger.info(
                    "SESSION: ignoring stored token issued for %s (selected %s)",
                    record.token_owner_base_url, self._selected_base_url,
                )
            self._token = None
            self._token_owner_base_url = None
            self._evaluate()
        self._notify()
        return self.snapshot()

    def select_environment(self, environment: typing.Union[Environment, str]) -> SessionSnapshot:
        return self.select_base_url(base_url_for(environment))

    def select_base_url(self, base_url: str) -> SessionSnapshot:
        if base_url == self._selected_base_url and self._status in (
                SessionStatus.READY, SessionStatus.AUTHENTICATING):
            return self.snapshot()

        logger.info("SESSION: switching backend %s -> %s", self._selected_base_url, base_url)
        # The old token must be gone before a sign-in for the new backend starts
        self._cancel_sign_in()
        self._token = None
        self._token_owner_base_url = None
        self._store.clear_token()

        self._selected_base_url = base_url
        self._persist()
        self._status = SessionStatus.IDLE
        self._last_error = None
        self._evaluate()
        self._notify()
        return self.snapshot()

    def set_token(self, value: typing.Optional[str]) -> SessionSnapshot:
        """Manual token entry; a non-empty value is trusted for the selected backend."""
        self._require_started()
        value = (value or "").strip()
        if value:
            self._cancel_sign_in()
            self._token = value
            self._token_owner_base_url = self._selected_base_url
            self._status = SessionStatus.READY
            self._last_error = None
            self._persist()
            logger.info("SESSION: manual token %s set for %s", mask_token(value), self._selected_base_url)
        else:
            self._token = None
            self._token_owner_base_url = None
            self._store.clear_token()
            if self._status not in (SessionStatus.SIGNED_OUT, SessionStatus.AUTHENTICATING):
                self._status = SessionStatus.IDLE
            logger.info("SESSION: token cleared for %s", self._selected_base_url)
            self._evaluate()
        self._notify()
        return self.snapshot()

    def retry(self) -> SessionSnapshot:
        self._require_started()
        if self._status in (SessionStatus.FAILED, SessionStatus.SIGNED_OUT):
            self._status = SessionStatus.IDLE
        self._evaluate()
        self._notify()
        return self.snapshot()

    def sign_out(self) -> SessionSnapshot:
        self._require_started()
        self._cancel_sign_in()
        self._token = None
        self._token_owner_base_url = None
        self._store.clear_token()
        self._status = SessionStatus.SIGNED_OUT
        self._last_error = None
        logger.info("SESSION: signed out of %s", self._selected_base_url)
        self._notify()
        return self.snapshot()

    async def wait_until_settled(self) -> SessionSnapshot:
        while self._sign_in_task is not None and not self._sign_in_task.done():
            await asyncio.wait({self._sign_in_task})
        return self.snapshot()

    async def close(self) -> None:
        task = self._sign_in_task
        self._cancel_sign_in()
        if task is not None:
            await asyncio.wait({task})

    # --- Transition function ---

    def _needs_sign_in(self) -> bool:
        return not self._token or self._token_owner_base_url != self._selected_base_url

    def _evaluate(self) -> None:
        if self._status == SessionStatus.SIGNED_OUT or self._selected_base_url is None:
            return
        if not self._needs_sign_in():
            return
        in_flight = self._sign_in_task is not None and not self._sign_in_task.done()
        if in_flight and self._status == SessionStatus.AUTHENTICATING:
            # A sign-in for the current selection is already running
            return
        self._begin_sign_in()

    def _begin_sign_in(self) -> None:
        self._cancel_sign_in()
        self._generation += 1
        base_url = self._selected_base_url
        self._status = SessionStatus.AUTHENTICATING
        self._last_error = None
        self._sign_in_task = asyncio.get_running_loop().create_task(
            self._run_sign_in(self._generation, base_url)
        )

    async def _run_sign_in(self, generation: int, base_url: str) -> None:
        try:
            token = await self._authenticator.sign_in(base_url, self._credentials)
        except asyncio.CancelledError:
            logger.info("SESSION: sign in for %s cancelled", base_url)
            raise
        except SignInError as e:
            self._fail(generation, base_url, str(e) or "Auto login failed")
            return
        except Exception:
            logger.exception("SESSION: unexpected error signing in to %s", base_url)
            self._fail(generation, base_url, "Auto login failed")
            return

        if not self._is_current(generation, base_url):
            logger.info("SESSION: discarding token for superseded %s", base_url)
            return
        self._token = token
        self._token_owner_base_url = base_url
        self._status = SessionStatus.READY
        self._last_error = None
        self._persist()
        logger.info("SESSION: ready for %s", base_url)
        self._notify()

    def _fail(self, generation: int, base_url: str, message: str) -> None:
        if not self._is_current(generation, base_url):
            logger.info("SESSION: discarding failed sign in for superseded %s", base_url)
            return
        self._token = None
        self._token_owner_base_url = None
        self._store.clear_token()
        self._status = SessionStatus.FAILED
        self._last_error = message
        logger.warning("SESSION: sign in for %s failed: %s", base_url, message)
        self._notify()

    def _is_current(self, generation: int, base_url: str) -> bool:
        return (
            generation == self._generation
            and base_url == self._selected_base_url
            and self._status == SessionStatus.AUTHENTICATING
        )

    def _cancel_sign_in(self) -> None:
        task = self._sign_in_task
        self._sign_in_task = None
        # Any outcome still in flight belongs to a superseded attempt
        self._generation += 1
        if task is not None and not task.done():
            task.cancel()

    # --- Helpers ---

    def _persist(self) -> None:
        self._store.save(
            PersistedSessionRecord(
                selected_base_url=self._selected_base_url,
                token=self._token,
                token_owner_base_url=self._token_owner_base_url,
            )
        )

    def _require_started(self) -> None:
        if self._selected_base_url is None:
            raise RuntimeError("SessionController.start() must be called first.")

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("SESSION: listener %r failed", listener)
