"""Remote store interface and its HTTP implementation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx
import structlog

from learning.errors import NetworkUnavailableError, RemoteRejectedError
from learning.merge import PatternRecord
from learning.models import SyncQueueItem

from .retry import TRANSIENT_ERRORS, remote_retry

logger = structlog.get_logger().bind(source="sync_remote")

SCHEMA_VERSION = 1


@dataclass
class RemoteChanges:
    """One page of remote pattern states newer than a cursor."""

    schema_version: int | None
    records: list[PatternRecord] = field(default_factory=list)
    cursor: str | None = None


class RemoteStore(ABC):
    """Optional remote copy of the pattern store.

    ``push`` must only return once the remote durably accepted the mutation;
    the caller acknowledges (deletes) the queue item afterwards.
    """

    @abstractmethod
    async def push(self, item: SyncQueueItem) -> None:
        """Send one queued mutation."""

    @abstractmethod
    async def pull(self, since: str | None) -> RemoteChanges:
        """Fetch pattern states changed after cursor ``since``."""

    async def close(self) -> None:
        pass


class HttpRemoteStore(RemoteStore):
    """JSON over HTTP.

    ``POST {base}/patterns/mutations`` with one mutation per request and
    ``GET {base}/patterns/changes?since=<cursor>`` for inbound changes.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        attempts: int = 2,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"User-Agent": "scribe-learning/0.1"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )
        self.attempts = attempts

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        send = remote_retry(max_attempts=self.attempts)(self.client.request)
        try:
            response = await send(method, path, **kwargs)
        except TRANSIENT_ERRORS as e:
            raise NetworkUnavailableError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise NetworkUnavailableError(f"{method} {path} returned {response.status_code}")
        if response.status_code >= 400:
            raise RemoteRejectedError(response.status_code, response.text[:200])
        return response

    async def push(self, item: SyncQueueItem) -> None:
        body = {
            "schema_version": SCHEMA_VERSION,
            "mutation": {
                "id": item.id,
                "type": item.mutation_type.value,
                "target_id": item.target_entity_id,
                "payload": item.payload,
            },
        }
        await self._request("POST", "/patterns/mutations", json=body)
        logger.debug("remote.pushed", item_id=item.id, mutation=item.mutation_type.value)

    async def pull(self, since: str | None) -> RemoteChanges:
        params = {"since": since} if since else {}
        response = await self._request("GET", "/patterns/changes", params=params)
        try:
            data = response.json()
            records = [PatternRecord.from_payload(r) for r in data.get("records", [])]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteRejectedError(response.status_code, f"malformed changes page: {e}") from e
        return RemoteChanges(
            schema_version=data.get("schema_version"),
            records=records,
            cursor=data.get("cursor"),
        )

    async def close(self) -> None:
        await self.client.aclose()
