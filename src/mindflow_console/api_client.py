# src/mindflow_console/api_client.py

import logging
import typing

import httpx
from pydantic import ValidationError

from .errors import ApiRequestError, MissingCredentialPrecondition
from .models import (
    AddTaskResult,
    AddToCalendarRequest,
    BrainDumpRequest,
    BrainDumpResponse,
    TaskItem,
    WellnessCheckIn,
)

logger = logging.getLogger(__name__)

WELLNESS_CHECK_IN_PATH = "/api/wellness/check-in"
TASKS_PATH = "/api/tasks"
SUGGESTIONS_PATH = "/brain-dump/suggestions"
ADD_TO_CALENDAR_PATH = "/brain-dump/add-to-calendar"


class MindflowApiClient:
    """Bearer-authenticated calls to the Mindflow backend used by the panels."""

    def __init__(
            self,
            timeout: float = 10.0,
            verify: bool = False,
            transport: typing.Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.verify = verify
        self.transport = transport

    async def _request(
            self,
            method: str,
            base_url: str,
            path: str,
            token: typing.Optional[str],
            params: typing.Optional[dict] = None,
            json: typing.Optional[dict] = None,
    ) -> httpx.Response:
        if not token or not token.strip():
            raise MissingCredentialPrecondition()

        url = f"{base_url}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Cache-Control": "no-store",
        }
        async with httpx.AsyncClient(
                verify=self.verify, timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                response = await client.request(method, url, headers=headers, params=params, json=json)
            except (httpx.RequestError, httpx.InvalidURL) as e:
                logger.warning("API: request error calling %s %s: %s", method, url, e)
                raise ApiRequestError(str(e) or f"Could not connect to {base_url}") from e

        if not response.is_success:
            detail = response.text or f"Request failed with {response.status_code}"
            logger.warning("API: %s %s returned %s - %s", method, url, response.status_code, detail)
            raise ApiRequestError(detail, status_code=response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> typing.Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiRequestError(f"Invalid JSON from {response.request.url}", response.status_code) from e

    async def get_wellness_check_in(
            self, base_url: str, token: typing.Optional[str]
    ) -> typing.Optional[WellnessCheckIn]:
        response = await self._request("GET", base_url, WELLNESS_CHECK_IN_PATH, token)
        body = self._json(response)
        if not body:
            return None
        return self._parse(WellnessCheckIn, body)

    async def get_tasks(self, base_url: str, token: typing.Optional[str], date: str) -> typing.List[TaskItem]:
        response = await self._request("GET", base_url, TASKS_PATH, token, params={"date": date})
        body = self._json(response) or []
        if not isinstance(body, list):
            raise ApiRequestError("Expected a list of tasks", response.status_code)
        return [self._parse(TaskItem, item) for item in body]

    async def request_suggestions(
            self, base_url: str, token: typing.Optional[str], request: BrainDumpRequest
    ) -> BrainDumpResponse:
        response = await self._request("POST", base_url, SUGGESTIONS_PATH, token, json=request.to_wire())
        return self._parse(BrainDumpResponse, self._json(response) or {})

    async def add_to_calendar(
            self, base_url: str, token: typing.Optional[str], request: AddToCalendarRequest
    ) -> AddTaskResult:
        response = await self._request("POST", base_url, ADD_TO_CALENDAR_PATH, token, json=request.to_wire())
        return self._parse(AddTaskResult, self._json(response) or {})

    @staticmethod
    def _parse(model, body):
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise ApiRequestError(f"Unexpected {model.__name__} payload: {e.error_count()} invalid field(s)") from e
