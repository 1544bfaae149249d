import asyncio
import inspect
import typing

import httpx
import pytest

from mindflow_console.api_client import MindflowApiClient
from mindflow_console.auth_utils import Authenticator
from mindflow_console.environments import Environment, base_url_for
from mindflow_console.session_controller import SessionController
from mindflow_console.session_data import Credentials
from mindflow_console.session_store import InMemorySessionStore

LOCAL = base_url_for(Environment.LOCAL)
DEV = base_url_for(Environment.DEV)
STAGING = base_url_for(Environment.STAGING)

CREDENTIALS = Credentials(user_name_or_email="user@mindflowai.com", password="User@123")


def token_for(base_url: str) -> str:
    return f"token-for-{base_url}"


class FakeBackend:
    """
    Stands in for every Mindflow environment at once. Requests are routed by origin
    and path; sign-ins can be held open with an asyncio.Event per origin.
    """

    def __init__(self):
        self.requests: typing.List[httpx.Request] = []
        self.sign_in_responses: typing.Dict[str, httpx.Response] = {}
        self.sign_in_gates: typing.Dict[str, asyncio.Event] = {}
        self.routes: typing.Dict[typing.Tuple[str, str], typing.Callable[[httpx.Request], httpx.Response]] = {}

    @staticmethod
    def origin_of(request: httpx.Request) -> str:
        url = request.url
        port = f":{url.port}" if url.port else ""
        return f"{url.scheme}://{url.host}{port}"

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def hold_sign_in(self, base_url: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.sign_in_gates[base_url] = gate
        return gate

    @staticmethod
    def fresh(response: httpx.Response) -> httpx.Response:
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def route(self, method: str, path: str, response):
        if isinstance(response, httpx.Response):
            self.routes[(method, path)] = lambda request: self.fresh(response)
        else:
            self.routes[(method, path)] = response

    def sign_in_requests(self, base_url: typing.Optional[str] = None) -> typing.List[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.path == "/api/users/signin" and (base_url is None or self.origin_of(r) == base_url)
        ]

    def authenticated_requests(self) -> typing.List[httpx.Request]:
        return [r for r in self.requests if "authorization" in r.headers]

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        origin = self.origin_of(request)
        if request.url.path == "/api/users/signin":
            gate = self.sign_in_gates.get(origin)
            if gate is not None:
                await gate.wait()
            if origin in self.sign_in_responses:
                return self.fresh(self.sign_in_responses[origin])
            return httpx.Response(200, json={"access_token": token_for(origin)})

        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, text=f"No route for {request.method} {request.url.path}")
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def make_controller(backend, store):
    def factory(default_base_url: str = LOCAL, authenticator=None, session_store=None) -> SessionController:
        return SessionController(
            store=session_store if session_store is not None else store,
            authenticator=authenticator or Authenticator(transport=backend.transport()),
            credentials=CREDENTIALS,
            default_base_url=default_base_url,
        )

    return factory


@pytest.fixture()
def api(backend) -> MindflowApiClient:
    return MindflowApiClient(transport=backend.transport())
