"""
Bridge to the external token authenticator.

POST {auth_url}
    {"uuid": "...", "token": "..."}

Expected response body:
    {"result": true}

AuthBridge.authenticate() never raises: every failure resolves to a
negative AuthResult carrying the upstream status when one was received and
500 otherwise.
"""

from typing import Optional

import httpx

from .config import RelaySettings
from .logger import get_logger, log_security_event
from .models import AuthResult, Status

logger = get_logger()


class AuthBridge:
    """One-shot credential check against the configured auth service"""

    def __init__(self, settings: RelaySettings, client: Optional[httpx.AsyncClient] = None):
        self._url = settings.auth_url
        self._timeout = settings.auth_timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def authenticate(self, uuid: str, token: str) -> AuthResult:
        """
        Ask the auth service whether token is valid for uuid

        Args:
            uuid: Identity the client wants to assume
            token: Credential for that identity

        Returns:
            AuthResult(result, status)
        """
        try:
            client = self._get_client()
            response = await client.post(
                self._url,
                json={"uuid": uuid, "token": token},
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            log_security_event("auth_timeout", {"uuid": uuid, "url": self._url})
            return AuthResult(False, int(Status.INTERNAL_ERROR))
        except httpx.HTTPError as e:
            logger.error(f"Auth request failed for {uuid}: {e}")
            return AuthResult(False, int(Status.INTERNAL_ERROR))

        if not response.is_success:
            log_security_event("auth_rejected_upstream", {"uuid": uuid, "status": response.status_code})
            return AuthResult(False, response.status_code)

        try:
            body = response.json()
        except ValueError:
            logger.error(f"Auth service returned a non-JSON body for {uuid}")
            return AuthResult(False, response.status_code)

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, bool):
            logger.error(f"Auth service response for {uuid} has no boolean result")
            return AuthResult(False, response.status_code)

        if not result:
            log_security_event("auth_denied", {"uuid": uuid})
        return AuthResult(result, response.status_code)

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
