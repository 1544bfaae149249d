# src/mindflow_console/auth_utils.py

import logging
import typing

import httpx

from .errors import AuthenticationFailure, NetworkFailure
from .session_data import Credentials, mask_token

logger = logging.getLogger(__name__)

SIGNIN_PATH = "/api/users/signin"


class Authenticator:
    """
    Performs the sign-in exchange against a backend environment.

    Cancellation is the caller's business: cancelling the awaiting task raises
    asyncio.CancelledError out of sign_in, which is neither a success nor a failure.
    """

    def __init__(
            self,
            timeout: float = 10.0,
            verify: bool = False,
            transport: typing.Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.verify = verify
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(verify=self.verify, timeout=self.timeout, transport=self.transport)

    async def sign_in(self, base_url: str, credentials: Credentials) -> str:
        url = f"{base_url}{SIGNIN_PATH}"
        logger.info("AUTH: signing in %s at %s", credentials.user_name_or_email, url)

        async with self._client() as client:
            try:
                response = await client.post(
                    url,
                    json=credentials.to_payload(),
                    headers={"Content-Type": "application/json"},
                )
            except (httpx.RequestError, httpx.InvalidURL) as e:
                logger.warning("AUTH: request error signing in at %s: %s", url, e)
                raise NetworkFailure(str(e) or f"Could not connect to {base_url}") from e

        if not response.is_success:
            detail = response.text or f"Sign in failed with status {response.status_code}"
            logger.warning("AUTH: sign in rejected at %s: %s - %s", url, response.status_code, detail)
            raise AuthenticationFailure(detail, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            data = None
        token = data.get("access_token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            logger.warning("AUTH: sign in at %s returned %s without access_token", url, response.status_code)
            raise AuthenticationFailure("Token missing from response", status_code=response.status_code)

        logger.info("AUTH: token acquired for %s (%s)", base_url, mask_token(token))
        return token
