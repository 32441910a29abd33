"""
Command executor contract and remote HTTP client.

Responsibility:
- Define the (action, parameters) -> ExecutorResult contract
- Implement it against a remote service (POST /execute)
- Load read-only reference data for dependency checks (GET /suppliers)
- Turn transport errors into failure results
"""

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from shared.errors import ReferenceDataUnavailableError
from shared.models import ExecutorResult

logger = logging.getLogger(__name__)


class CommandExecutor(Protocol):
    async def execute(self, action: str, parameters: dict[str, Any]) -> ExecutorResult: ...


class HttpCommandExecutor:
    """Executor backed by a remote service speaking the executor contract."""

    def __init__(self, base_url: str, auth_token: str | None = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if auth_token:
            self.headers["Authorization"] = f"Bearer {auth_token}"

    async def execute(self, action: str, parameters: dict[str, Any]) -> ExecutorResult:
        """
        Execute one action remotely.
        POST /execute {action, parameters}
        """
        url = f"{self.base_url}/execute"
        payload = {"action": action, "parameters": parameters}

        try:
            logger.info("Calling executor: %s action=%s", url, action)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=self.headers)

            if response.status_code != 200:
                logger.error("Executor error %s: %s", response.status_code, response.text)
                return ExecutorResult(
                    success=False,
                    message=f"Executor returned status {response.status_code}",
                    data={"status_code": response.status_code, "body": response.text},
                )
            return ExecutorResult.model_validate(response.json())

        except httpx.RequestError as e:
            logger.error("Network error calling executor '%s': %r", url, e)
            return ExecutorResult(success=False, message=f"Network error connecting to executor: {e}")
        except (ValueError, ValidationError) as e:
            logger.error("Malformed executor response from %s: %s", url, e)
            return ExecutorResult(success=False, message=f"Malformed executor response: {e}")


class HttpReferenceData:
    """Supplier lookups against the same remote service (GET /suppliers)."""

    def __init__(self, base_url: str, auth_token: str | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers: dict[str, str] = {}
        if auth_token:
            self.headers["Authorization"] = f"Bearer {auth_token}"
        self._supplier_names: list[str] | None = None

    async def refresh(self) -> None:
        """Reload the supplier list; failures raise ReferenceDataUnavailableError."""
        url = f"{self.base_url}/suppliers"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers=self.headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error("Supplier lookup failed at %s: %r", url, e)
            raise ReferenceDataUnavailableError(f"Could not load suppliers: {e}") from e
        except ValueError as e:
            logger.error("Malformed supplier list from %s: %s", url, e)
            raise ReferenceDataUnavailableError(f"Malformed supplier list: {e}") from e

        rows = payload.get("data", payload) if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            raise ReferenceDataUnavailableError("Supplier list payload must be a list")
        self._supplier_names = [
            str(row.get("name", "")) for row in rows if isinstance(row, dict) and row.get("name")
        ]

    def supplier_names(self) -> list[str]:
        if self._supplier_names is None:
            raise ReferenceDataUnavailableError("Supplier list has not been loaded")
        return list(self._supplier_names)
