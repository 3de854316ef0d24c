# taskvault/Todoist/todoist_client.py
# Description: httpx client for the Todoist Sync API
#
# This module handles every network interaction with Todoist: reading
# projects/sections/items with a sync token and posting command batches.

from __future__ import annotations
import json
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from .remote_service import CommandStatus, DispatchResult, FetchResult, RemoteTaskService
from .schemas import Command, CommandResponse, SyncResponse
from ..Sync.errors import ConfigurationError, TransportError
from ..Utils.logging_config import mask_secret

logger = logger.bind(module="todoist_client")

DEFAULT_SYNC_URL = "https://api.todoist.com/sync/v9/sync"
FULL_SYNC_TOKEN = "*"
RESOURCE_TYPES = ["projects", "sections", "items"]


class TodoistSyncClient(RemoteTaskService):
    """Client for the Todoist Sync API."""

    def __init__(self, api_token: str, sync_url: str = DEFAULT_SYNC_URL, timeout: float = 30.0):
        """Initialize the Todoist client.

        Args:
            api_token: Personal API token of the account to mirror
            sync_url: Endpoint of the Sync API
            timeout: Request timeout in seconds
        """
        self.api_token = api_token
        self.sync_url = sync_url
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        logger.info(f"Todoist client initialized for {sync_url} with token {mask_secret(api_token)}")

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "User-Agent": "taskvault-sync",
                },
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, data: Dict[str, str]) -> Dict[str, Any]:
        if not self.api_token:
            raise ConfigurationError("Todoist API token is not configured")

        try:
            response = await self.client.post(self.sync_url, data=data)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                logger.error(f"Todoist rejected the API token (HTTP {status})")
            else:
                logger.error(f"Todoist API returned HTTP {status}")
            raise TransportError(f"Todoist API returned HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.error(f"Network error talking to Todoist: {e}")
            raise TransportError(f"Network error talking to Todoist: {e}") from e
        except ValueError as e:
            logger.error(f"Todoist returned a body that is not JSON: {e}")
            raise TransportError("Todoist returned a body that is not JSON") from e

    async def fetch(self, cursor: Optional[str], full: bool) -> FetchResult:
        """Fetch projects, sections and items.

        Args:
            cursor: Sync token of the previous pass, or None
            full: Request the whole account regardless of ``cursor``

        Returns:
            FetchResult with the next cursor
        """
        token = FULL_SYNC_TOKEN if full or not cursor else cursor
        logger.info(f"Fetching {'full' if token == FULL_SYNC_TOKEN else 'incremental'} data from Todoist")
        body = await self._post({
            "sync_token": token,
            "resource_types": json.dumps(RESOURCE_TYPES),
        })

        try:
            parsed = SyncResponse.model_validate(body)
        except ValidationError as e:
            logger.error(f"Unexpected sync response shape: {e}")
            raise TransportError("Unexpected sync response shape") from e

        logger.debug(
            f"Fetched {len(parsed.projects)} projects, {len(parsed.sections)} sections, "
            f"{len(parsed.items)} items (full_sync={parsed.full_sync})"
        )
        return FetchResult(
            projects=parsed.projects,
            sections=parsed.sections,
            tasks=parsed.items,
            next_cursor=parsed.sync_token,
            full=parsed.full_sync or token == FULL_SYNC_TOKEN,
        )

    async def dispatch(self, commands: List[Command]) -> DispatchResult:
        """Post a batch of commands in one request."""
        if not commands:
            return DispatchResult()

        logger.info(f"Sending {len(commands)} command(s) to Todoist")
        body = await self._post({"commands": json.dumps([c.to_payload() for c in commands])})

        try:
            parsed = CommandResponse.model_validate(body)
        except ValidationError as e:
            logger.error(f"Unexpected command response shape: {e}")
            raise TransportError("Unexpected command response shape") from e

        if not parsed.sync_status:
            raise TransportError("Todoist returned no per-command status")

        statuses: Dict[str, CommandStatus] = {}
        for correlation_id, status in parsed.sync_status.items():
            if status == "ok":
                statuses[correlation_id] = CommandStatus(correlation_id, accepted=True)
            elif isinstance(status, dict):
                statuses[correlation_id] = CommandStatus(
                    correlation_id,
                    accepted=False,
                    error_code=str(status.get("error_code")) if status.get("error_code") is not None else None,
                    error_message=str(status.get("error", "")),
                )
            else:
                statuses[correlation_id] = CommandStatus(
                    correlation_id, accepted=False, error_message=str(status)
                )

        return DispatchResult(
            statuses=statuses,
            temp_id_mapping=parsed.temp_id_mapping,
            next_cursor=parsed.sync_token,
        )
