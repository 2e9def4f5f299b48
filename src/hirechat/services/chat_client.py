"""HTTP client for the remote chat server.

This module provides the ChatClient class that handles all communication
between the platform and the Matrix-compatible chat server. It includes:

- HTTP client with bearer authentication
- Mapping of chat server replies onto the sync error hierarchy
- Circuit breaker pattern for fault tolerance
- Metrics collection for monitoring

Retries are handled by ``hirechat.services.executor``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx

from hirechat.core.settings import Settings
from hirechat.services.errors import (
    AlreadyExistsError,
    ChatDisabledError,
    ChatSyncError,
    RateLimitedError,
    RemoteRequestError,
    RemoteUnavailableError,
)

logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200
HTTP_CONFLICT = 409
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500

# Matrix error codes with dedicated handling
ERRCODE_LIMIT_EXCEEDED = "M_LIMIT_EXCEEDED"
CONFLICT_ERRCODES = frozenset({"M_USER_IN_USE", "M_ROOM_IN_USE"})

CLIENT_API = "/_matrix/client/v3"
ADMIN_API = "/_synapse/admin/v2"

# Request outcomes recorded in ChatMetrics
OUTCOME_OK = "ok"
OUTCOME_RATE_LIMITED = "rate_limited"
OUTCOME_CONFLICT = "conflict"
OUTCOME_UNAVAILABLE = "unavailable"
OUTCOME_NETWORK_ERROR = "network_error"


class CircuitState(Enum):
    """Circuit breaker states for fault tolerance."""

    CLOSED = "closed"      # Normal operation - requests allowed
    OPEN = "open"          # Circuit is open - requests blocked
    HALF_OPEN = "half_open"  # Testing if service is back - limited requests allowed


@dataclass
class ChatMetrics:
    """Request counters for the chat server, keyed by client operation.

    Rate limiting and conflicts are expected outcomes (the executor retries
    the first, provisioning recovers from the second), so they are counted
    apart from real errors.
    """

    request_count: int = 0
    success_count: int = 0
    rate_limited_count: int = 0
    conflict_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    max_response_time: float = 0.0
    operation_counts: Counter[str] = field(default_factory=Counter)
    error_counts_by_type: Counter[str] = field(default_factory=Counter)

    def record(self, operation: str, response_time: float, outcome: str = OUTCOME_OK) -> None:
        self.request_count += 1
        self.total_response_time += response_time
        self.max_response_time = max(self.max_response_time, response_time)
        self.operation_counts[operation] += 1

        if outcome == OUTCOME_OK:
            self.success_count += 1
        elif outcome == OUTCOME_RATE_LIMITED:
            self.rate_limited_count += 1
        elif outcome == OUTCOME_CONFLICT:
            self.conflict_count += 1
        else:
            self.error_count += 1
            self.error_counts_by_type[outcome] += 1

    def snapshot(self) -> dict[str, Any]:
        average = self.total_response_time / self.request_count if self.request_count else 0.0
        success_rate = (
            self.success_count / self.request_count * 100 if self.request_count else 0.0
        )
        return {
            "request_count": self.request_count,
            "success_count": self.success_count,
            "rate_limited_count": self.rate_limited_count,
            "conflict_count": self.conflict_count,
            "error_count": self.error_count,
            "success_rate": success_rate,
            "average_response_time": average,
            "max_response_time": self.max_response_time,
            "operation_counts": dict(self.operation_counts),
            "error_counts_by_type": dict(self.error_counts_by_type),
        }


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding the chat server."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        """Check if circuit is open."""
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        """Record a successful operation."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed operation."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def status(self) -> dict[str, Any]:
        """Return a serializable snapshot of the breaker."""
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "is_open": self.is_open(),
        }


@dataclass(frozen=True)
class ChatConfig:
    """Immutable configuration for chat server operations."""

    enabled: bool
    base_url: str | None
    server_name: str | None
    admin_token: str | None
    encryption_key: str | None
    timeout_seconds: float = 10.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    room_alias_prefix: str = "job"
    circuit_failure_threshold: int = 5
    circuit_recovery_seconds: float = 60.0


def load_chat_config(source: Settings | None = None) -> ChatConfig:
    """Build configuration object from application settings."""
    if source is None:
        from hirechat.core.settings import settings as source

    complete = all(
        (
            source.chat_base_url,
            source.chat_server_name,
            source.chat_admin_token,
            source.chat_encryption_key,
        )
    )
    return ChatConfig(
        enabled=bool(source.chat_enabled and complete),
        base_url=source.chat_base_url,
        server_name=source.chat_server_name,
        admin_token=source.chat_admin_token,
        encryption_key=source.chat_encryption_key,
        timeout_seconds=float(source.chat_http_timeout_seconds),
        max_retries=source.chat_max_retries,
        retry_base_delay=float(source.chat_retry_base_delay_seconds),
        room_alias_prefix=source.chat_room_alias_prefix,
        circuit_failure_threshold=source.chat_circuit_failure_threshold,
        circuit_recovery_seconds=float(source.chat_circuit_recovery_seconds),
    )


def _parse_retry_after(response: httpx.Response, body: Mapping[str, Any]) -> float | None:
    retry_after_ms = body.get("retry_after_ms")
    if isinstance(retry_after_ms, (int, float)):
        return max(0.0, retry_after_ms / 1000.0)

    header = response.headers.get("Retry-After")
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            return None
    return None


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class ChatClient:
    """HTTP client wrapper for chat server interactions."""

    def __init__(
        self,
        config: ChatConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_seconds,
        )
        self._metrics = ChatMetrics()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.base_url)

    def user_id_for(self, localpart: str) -> str:
        """Return the fully qualified remote user id for ``localpart``."""
        return f"@{localpart}:{self.config.server_name}"

    def room_alias_for(self, alias_localpart: str) -> str:
        """Return the fully qualified room alias for ``alias_localpart``."""
        return f"#{alias_localpart}:{self.config.server_name}"

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise ChatDisabledError("Chat integration is not enabled")

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url or "",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )

        return self._client

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""

        operation: str
        method: str
        path: str
        json_data: Any | None = None
        params: Mapping[str, Any] | None = None
        access_token: str | None = None

    async def _request(self, params: RequestParams) -> dict[str, Any]:
        if self._circuit_breaker.is_open():
            raise RemoteUnavailableError("Chat server circuit breaker is open")

        client = await self._ensure_client()
        headers: dict[str, str] = {}
        if params.access_token:
            headers["Authorization"] = f"Bearer {params.access_token}"

        start_time = time.monotonic()
        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                params=params.params,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            self._metrics.record(
                params.operation, time.monotonic() - start_time, OUTCOME_NETWORK_ERROR
            )
            raise RemoteUnavailableError(f"Chat server request failed: {exc}") from exc

        response_time = time.monotonic() - start_time
        body = _json_body(response)
        outcome = OUTCOME_OK
        try:
            self._raise_for_status(response, body)
        except RemoteUnavailableError:
            self._circuit_breaker.record_failure()
            outcome = OUTCOME_UNAVAILABLE
            raise
        except RateLimitedError:
            outcome = OUTCOME_RATE_LIMITED
            raise
        except AlreadyExistsError:
            outcome = OUTCOME_CONFLICT
            raise
        except RemoteRequestError:
            outcome = f"http_{response.status_code}"
            raise
        else:
            self._circuit_breaker.record_success()
        finally:
            self._metrics.record(params.operation, response_time, outcome)

        return body

    @staticmethod
    def _raise_for_status(response: httpx.Response, body: Mapping[str, Any]) -> None:
        status_code = response.status_code
        if status_code < 300:
            return

        errcode = body.get("errcode")
        detail = body.get("error") or response.reason_phrase
        message = f"Chat server responded with {status_code} ({errcode or 'no errcode'}): {detail}"

        if status_code == HTTP_TOO_MANY_REQUESTS or errcode == ERRCODE_LIMIT_EXCEEDED:
            raise RateLimitedError(message, retry_after=_parse_retry_after(response, body))
        if status_code == HTTP_CONFLICT or errcode in CONFLICT_ERRCODES:
            raise AlreadyExistsError(message)
        if status_code >= HTTP_INTERNAL_SERVER_ERROR:
            raise RemoteUnavailableError(message)
        raise RemoteRequestError(message, status_code=status_code, errcode=errcode)

    async def register_account(self, localpart: str, password: str) -> str:
        """Create a remote account and return its user id.

        Raises:
            AlreadyExistsError: If the localpart is already registered
        """
        body = await self._request(
            self.RequestParams(
                operation="register",
                method="POST",
                path=f"{CLIENT_API}/register",
                json_data={
                    "username": localpart,
                    "password": password,
                    "auth": {"type": "m.login.dummy"},
                    "inhibit_login": True,
                },
            )
        )
        return str(body.get("user_id") or self.user_id_for(localpart))

    async def upsert_account(self, user_id: str, password: str, display_name: str) -> None:
        """Reset an existing account's password and display name via the admin API."""
        await self._request(
            self.RequestParams(
                operation="upsert_account",
                method="PUT",
                path=f"{ADMIN_API}/users/{quote(user_id, safe='')}",
                json_data={
                    "password": password,
                    "displayname": display_name,
                    "logout_devices": False,
                },
                access_token=self.config.admin_token,
            )
        )

    async def login(self, localpart: str, password: str) -> str:
        """Exchange a password for a session access token."""
        body = await self._request(
            self.RequestParams(
                operation="login",
                method="POST",
                path=f"{CLIENT_API}/login",
                json_data={
                    "type": "m.login.password",
                    "identifier": {"type": "m.id.user", "user": localpart},
                    "password": password,
                },
            )
        )
        token = body.get("access_token")
        if not token:
            raise RemoteRequestError(
                "Chat server login returned no access token", status_code=HTTP_OK
            )
        return str(token)

    async def set_display_name(self, user_id: str, display_name: str, access_token: str) -> None:
        await self._request(
            self.RequestParams(
                operation="set_display_name",
                method="PUT",
                path=f"{CLIENT_API}/profile/{quote(user_id, safe='')}/displayname",
                json_data={"displayname": display_name},
                access_token=access_token,
            )
        )

    async def create_room(
        self,
        alias: str | None,
        name: str,
        topic: str | None,
        access_token: str,
    ) -> tuple[str, str | None]:
        """Create a public, open-join room.

        Args:
            alias: Alias localpart, or None for a room without an alias
            name: Room display name
            topic: Optional room topic
            access_token: Session credential of the room creator

        Returns:
            Tuple of (room_id, fully qualified alias or None)
        """
        payload: dict[str, Any] = {
            "name": name,
            "visibility": "public",
            "preset": "public_chat",
        }
        if alias:
            payload["room_alias_name"] = alias
        if topic:
            payload["topic"] = topic

        body = await self._request(
            self.RequestParams(
                operation="create_room",
                method="POST",
                path=f"{CLIENT_API}/createRoom",
                json_data=payload,
                access_token=access_token,
            )
        )
        room_id = body.get("room_id")
        if not room_id:
            raise RemoteRequestError(
                "Chat server room creation returned no room id", status_code=HTTP_OK
            )
        room_alias = body.get("room_alias") or (self.room_alias_for(alias) if alias else None)
        return str(room_id), room_alias

    async def resolve_alias(self, alias: str) -> str:
        """Resolve a room alias localpart to its room id."""
        full_alias = alias if alias.startswith("#") else self.room_alias_for(alias)
        body = await self._request(
            self.RequestParams(
                operation="resolve_alias",
                method="GET",
                path=f"{CLIENT_API}/directory/room/{quote(full_alias, safe='')}",
                access_token=self.config.admin_token,
            )
        )
        room_id = body.get("room_id")
        if not room_id:
            raise RemoteRequestError(
                f"Chat server could not resolve alias {full_alias}", status_code=HTTP_OK
            )
        return str(room_id)

    async def invite(self, room_id: str, user_id: str, access_token: str) -> None:
        await self._request(
            self.RequestParams(
                operation="invite",
                method="POST",
                path=f"{CLIENT_API}/rooms/{quote(room_id, safe='')}/invite",
                json_data={"user_id": user_id},
                access_token=access_token,
            )
        )

    async def kick(self, room_id: str, user_id: str, reason: str) -> None:
        """Force a user out of a room using the administrative credential."""
        await self._request(
            self.RequestParams(
                operation="kick",
                method="POST",
                path=f"{CLIENT_API}/rooms/{quote(room_id, safe='')}/kick",
                json_data={"user_id": user_id, "reason": reason},
                access_token=self.config.admin_token,
            )
        )

    async def send_message(self, room_id: str, body: str, txn_id: str, access_token: str) -> str:
        """Send a text message; ``txn_id`` makes repeated sends idempotent."""
        reply = await self._request(
            self.RequestParams(
                operation="send_message",
                method="PUT",
                path=(
                    f"{CLIENT_API}/rooms/{quote(room_id, safe='')}"
                    f"/send/m.room.message/{quote(txn_id, safe='')}"
                ),
                json_data={"msgtype": "m.text", "body": body},
                access_token=access_token,
            )
        )
        return str(reply.get("event_id", ""))

    async def list_messages(
        self, room_id: str, access_token: str, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Return the most recent message events of a room, newest first."""
        reply = await self._request(
            self.RequestParams(
                operation="list_messages",
                method="GET",
                path=f"{CLIENT_API}/rooms/{quote(room_id, safe='')}/messages",
                params={"dir": "b", "limit": limit},
                access_token=access_token,
            )
        )
        chunk = reply.get("chunk", []) or []
        return [event for event in chunk if event.get("type") == "m.room.message"]

    async def health_check(self) -> dict[str, Any]:
        """Perform a health check on the chat server connection."""
        if not self.enabled:
            return {
                "status": "disabled",
                "enabled": False,
                "error": "Chat integration is disabled",
            }

        try:
            body = await self._request(
                self.RequestParams(
                    operation="versions", method="GET", path="/_matrix/client/versions"
                )
            )
        except ChatSyncError as e:
            return {
                "status": "error",
                "enabled": True,
                "error": str(e),
                "circuit_breaker": self.get_circuit_breaker_status(),
            }

        return {
            "status": "healthy",
            "enabled": True,
            "versions": body.get("versions", []),
            "circuit_breaker": self.get_circuit_breaker_status(),
        }

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        """Get the current circuit breaker status."""
        return self._circuit_breaker.status()

    def get_metrics(self) -> dict[str, Any]:
        """Get chat server request metrics."""
        return self._metrics.snapshot()

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
