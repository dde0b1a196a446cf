"""Connector platforms that perform the side effects behind a tool."""

import os
from typing import Any, Optional

import httpx

from actionflow.exceptions import ConfigurationError, DispatchFailure


class ConnectorExecutor:
    async def trigger(
        self,
        provider_config_key: str,
        connection_id: str,
        action_name: str,
        payload: dict,
    ) -> Any:
        """Run one connector action and return its raw response body."""
        raise NotImplementedError


class NangoExecutor(ConnectorExecutor):
    """Triggers actions through the Nango REST API.

    Args:
        secret_key: Nango secret key. Falls back to NANGO_SECRET_KEY environment variable.
        base_url: API base URL. Falls back to NANGO_BASE_URL, then https://api.nango.dev.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.secret_key = secret_key or os.environ.get("NANGO_SECRET_KEY")
        if not self.secret_key:
            raise ConfigurationError(
                "Nango secret key not provided. "
                "Pass secret_key argument or set NANGO_SECRET_KEY environment variable."
            )
        self.base_url = (
            base_url or os.environ.get("NANGO_BASE_URL") or "https://api.nango.dev"
        ).rstrip("/")
        self.timeout = timeout

    async def trigger(
        self,
        provider_config_key: str,
        connection_id: str,
        action_name: str,
        payload: dict,
    ) -> Any:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/action/trigger",
                json={"action_name": action_name, "input": payload},
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Connection-Id": connection_id,
                    "Provider-Config-Key": provider_config_key,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )

        if response.status_code >= 400:
            raise DispatchFailure(
                f"Connector action '{action_name}' failed "
                f"({response.status_code}): {self._error_message(response)}"
            )
        if not response.content:
            return {}
        return response.json()

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or "Unknown error"
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                return error.get("message") or str(error)
            return error or body.get("message") or str(body)
        return str(body)
