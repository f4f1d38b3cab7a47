"""HTTP client for the backup agent REST API."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import httpx

from backup_supervisor.config import AgentSettings
from backup_supervisor.demux import StreamDemultiplexer
from backup_supervisor.errors import AgentError, AgentUnreachable
from backup_supervisor.operations.models import (
    AgentAbortAck,
    AgentLastOperation,
    CapturedLogs,
    OperationKind,
    parse_agent_state,
)

logger = logging.getLogger(__name__)

FRAMED_STREAM_CONTENT_TYPE = "application/vnd.docker.raw-stream"
_UNAVAILABLE_STATUS_CODES = frozenset({502, 503, 504})


class HttpAgent:
    """Agent client speaking ``/v1/<kind>`` endpoints over httpx."""

    def __init__(
        self,
        *,
        settings: AgentSettings,
        log_tail: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.log_tail = log_tail
        self._client = httpx.Client(
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            auth=httpx.BasicAuth(settings.username, settings.password),
            transport=transport,
        )

    def resolve_address(self, deployment: str) -> str:
        return self.settings.address_template.format(deployment=deployment)

    def start(
        self,
        address: str,
        kind: OperationKind,
        params: Mapping[str, Any],
    ) -> dict[str, Any]:
        with self._call(address, "start"):
            response = self._client.post(self._url(address, kind), json=dict(params))
        _raise_for_status(response, address=address, action=f"start {kind.value}")
        if not response.content:
            return {}
        payload = _json(response, address=address, action=f"start {kind.value}")
        return payload if isinstance(payload, dict) else {"response": payload}

    def get_last_operation(self, address: str, kind: OperationKind) -> AgentLastOperation:
        with self._call(address, "get last operation"):
            response = self._client.get(self._url(address, kind))
        _raise_for_status(response, address=address, action=f"get last {kind.value} operation")
        payload = _json(response, address=address, action=f"get last {kind.value} operation")
        if not isinstance(payload, dict):
            raise AgentError(f"Agent {address} returned malformed last operation: {payload!r}")
        try:
            return AgentLastOperation.from_payload(payload)
        except ValueError as error:
            raise AgentError(f"Agent {address} returned invalid last operation: {error}") from error

    def get_logs(self, address: str, kind: OperationKind) -> CapturedLogs:
        with (
            self._call(address, "get logs"),
            self._client.stream("GET", self._url(address, kind, "logs")) as response,
        ):
            _raise_for_status(response, address=address, action=f"get {kind.value} logs")
            content_type = response.headers.get("content-type", "")
            if content_type.startswith(FRAMED_STREAM_CONTENT_TYPE):
                return self._demux_logs(response)
            response.read()

        if content_type.startswith("application/json"):
            payload = _json(response, address=address, action=f"get {kind.value} logs")
            return _logs_from_json(payload, address=address)
        return CapturedLogs(stdout=response.text.splitlines())

    def abort(self, address: str, kind: OperationKind) -> AgentAbortAck:
        with self._call(address, "abort"):
            response = self._client.delete(self._url(address, kind))
        _raise_for_status(response, address=address, action=f"abort {kind.value}")
        if not response.content:
            return AgentAbortAck()
        payload = _json(response, address=address, action=f"abort {kind.value}")
        raw_state = payload.get("state") if isinstance(payload, dict) else None
        if not isinstance(raw_state, str):
            return AgentAbortAck()
        try:
            return AgentAbortAck(state=parse_agent_state(raw_state))
        except ValueError as error:
            raise AgentError(f"Agent {address} returned invalid abort state: {error}") from error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpAgent:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _url(self, address: str, kind: OperationKind, *suffix: str) -> str:
        path = "/".join(("v1", kind.value, *suffix))
        return f"{self.settings.protocol}://{address}:{self.settings.port}/{path}"

    def _demux_logs(self, response: httpx.Response) -> CapturedLogs:
        demultiplexer = StreamDemultiplexer(tail=self.log_tail)
        try:
            for chunk in response.iter_bytes():
                demultiplexer.feed(chunk)
        except httpx.HTTPError as error:
            demultiplexer.fail(error)
            raise
        result = demultiplexer.close()
        return CapturedLogs(
            stdout=[entry.rstrip("\r\n") for entry in result.stdout],
            stderr=[entry.rstrip("\r\n") for entry in result.stderr],
            stdout_total=result.stdout_total,
            stderr_total=result.stderr_total,
        )

    @contextmanager
    def _call(self, address: str, action: str) -> Iterator[None]:
        try:
            yield
        except httpx.TransportError as error:
            logger.warning("Agent %s unreachable during %s: %s", address, action, error)
            raise AgentUnreachable(f"Agent {address} unreachable during {action}: {error}") from (
                error
            )


def _raise_for_status(response: httpx.Response, *, address: str, action: str) -> None:
    if response.is_success:
        return
    if response.status_code in _UNAVAILABLE_STATUS_CODES:
        raise AgentUnreachable(
            f"Agent {address} unavailable during {action}: HTTP {response.status_code}",
        )
    raise AgentError(
        f"Agent {address} rejected {action}: HTTP {response.status_code}",
        status_code=response.status_code,
    )


def _json(response: httpx.Response, *, address: str, action: str) -> Any:
    try:
        return response.json()
    except ValueError as error:
        raise AgentError(
            f"Agent {address} returned invalid JSON during {action}: {error}",
            status_code=response.status_code,
        ) from error

def _logs_from_json(payload: object, *, address: str) -> CapturedLogs:
    if isinstance(payload, list):
        return CapturedLogs(stdout=[str(line) for line in payload])
    if isinstance(payload, dict):
        return CapturedLogs(
            stdout=[str(line) for line in payload.get("stdout", [])],
            stderr=[str(line) for line in payload.get("stderr", [])],
        )
    raise AgentError(f"Agent {address} returned malformed logs: {payload!r}")
