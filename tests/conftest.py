# tests/conftest.py
from __future__ import annotations

import base64
import json
import os
from collections.abc import Callable, Generator, Iterator
from dataclasses import dataclass, field
from itertools import count
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite://")

from hirechat.db.session import Base, build_engine, get_db
from hirechat.main import app as fastapi_app
from hirechat.models import (
    APPLICATION_STATUS_APPLIED,
    JOB_STATUS_OPEN,
    Job,
    JobApplication,
    Organization,
    User,
)
from hirechat.services.chat_client import ChatClient, ChatConfig
from hirechat.services.chat_service import MatrixChatService
from hirechat.services.crypto import CredentialVault
from hirechat.services.executor import RemoteExecutor, RetryPolicy

TEST_DB_URL = "sqlite://"
SERVER_NAME = "hire.test"
ADMIN_TOKEN = "admin-token"
ADMIN_USER_ID = f"@admin:{SERVER_NAME}"
TEST_KEY = bytes(range(32))

_EMAIL_COUNTER = count(1)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = build_engine(TEST_DB_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def client(app: FastAPI, override_session_dependency: None) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


# -- fake chat server --------------------------------------------------------


def _error(status: int, errcode: str, message: str, **extra: Any) -> httpx.Response:
    return httpx.Response(status, json={"errcode": errcode, "error": message, **extra})


@dataclass
class _Injected:
    fragment: str
    response: Callable[[], httpx.Response]
    remaining: int


@dataclass
class FakeChatServer:
    """In-memory stand-in for the Matrix endpoints the client uses."""

    server_name: str = SERVER_NAME
    passwords: dict[str, str] = field(default_factory=dict)
    display_names: dict[str, str] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=lambda: {ADMIN_TOKEN: ADMIN_USER_ID})
    rooms: dict[str, dict[str, Any]] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, str, dict[str, Any], str | None]] = field(default_factory=list)
    _injected: list[_Injected] = field(default_factory=list)
    _hooks: list[tuple[str, Callable[[], None]]] = field(default_factory=list)
    _sent: dict[tuple[str, str], str] = field(default_factory=dict)
    _ids: Any = field(default_factory=lambda: count(1))

    # - test controls -

    def rate_limit(self, fragment: str, *, times: int = 1, retry_after_ms: int | None = None) -> None:
        extra = {} if retry_after_ms is None else {"retry_after_ms": retry_after_ms}
        self._injected.append(
            _Injected(
                fragment,
                lambda: _error(429, "M_LIMIT_EXCEEDED", "Too many requests", **extra),
                times,
            )
        )

    def fail(self, fragment: str, *, status: int = 503, times: int = 1) -> None:
        self._injected.append(
            _Injected(fragment, lambda: _error(status, "M_UNKNOWN", "Server unavailable"), times)
        )

    def on_request(self, fragment: str, callback: Callable[[], None]) -> None:
        """Run ``callback`` once, just before the next matching request is handled."""
        self._hooks.append((fragment, callback))

    def user_id(self, localpart: str) -> str:
        return f"@{localpart}:{self.server_name}"

    def members(self, room_id: str) -> set[str]:
        return set(self.rooms[room_id]["members"])

    def owner_of(self, token: str) -> str | None:
        return self.tokens.get(token)

    def calls_to(self, fragment: str) -> list[tuple[str, str, dict[str, Any], str | None]]:
        return [call for call in self.calls if fragment in call[1]]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    # - request handling -

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        auth = request.headers.get("Authorization", "")
        token = auth.removeprefix("Bearer ") if auth else None
        self.calls.append((request.method, path, body, token))

        for hook in [hook for hook in self._hooks if hook[0] in path]:
            self._hooks.remove(hook)
            hook[1]()

        for injected in self._injected:
            if injected.fragment in path and injected.remaining > 0:
                injected.remaining -= 1
                return injected.response()

        parts = path.split("/")
        if path == "/_matrix/client/versions":
            return httpx.Response(200, json={"versions": ["v1.9"]})
        if path.endswith("/register"):
            return self._register(body)
        if path.startswith("/_synapse/admin/v2/users/"):
            return self._upsert(parts[-1], body, token)
        if path.endswith("/login"):
            return self._login(body)

        caller = self.tokens.get(token or "")
        if caller is None:
            return _error(401, "M_UNKNOWN_TOKEN", "Unknown token")
        if path.endswith("/displayname"):
            self.display_names[parts[-2]] = body["displayname"]
            return httpx.Response(200, json={})
        if path.endswith("/createRoom"):
            return self._create_room(caller, body)
        if "/directory/room/" in path:
            room_id = self.aliases.get(parts[-1])
            if room_id is None:
                return _error(404, "M_NOT_FOUND", "Alias not found")
            return httpx.Response(200, json={"room_id": room_id})
        if path.endswith("/invite"):
            return self._invite(caller, parts[-2], body["user_id"])
        if path.endswith("/kick"):
            return self._kick(caller, parts[-2], body["user_id"])
        if "/send/m.room.message/" in path:
            return self._send(caller, token or "", parts[-4], parts[-1], body)
        if path.endswith("/messages"):
            room = self.rooms[parts[-2]]
            limit = int(request.url.params.get("limit", 50))
            chunk = list(reversed(room["events"]))[:limit]
            return httpx.Response(200, json={"chunk": chunk})
        return _error(404, "M_UNRECOGNIZED", f"Unrecognized request {path}")

    def _register(self, body: dict[str, Any]) -> httpx.Response:
        user_id = self.user_id(body["username"])
        if user_id in self.passwords:
            return _error(400, "M_USER_IN_USE", "User ID already taken.")
        self.passwords[user_id] = body["password"]
        return httpx.Response(200, json={"user_id": user_id})

    def _upsert(self, user_id: str, body: dict[str, Any], token: str | None) -> httpx.Response:
        if token != ADMIN_TOKEN:
            return _error(403, "M_FORBIDDEN", "You are not a server admin")
        created = user_id not in self.passwords
        self.passwords[user_id] = body["password"]
        self.display_names[user_id] = body["displayname"]
        return httpx.Response(201 if created else 200, json={"name": user_id})

    def _login(self, body: dict[str, Any]) -> httpx.Response:
        user_id = self.user_id(body["identifier"]["user"])
        if self.passwords.get(user_id) != body["password"]:
            return _error(403, "M_FORBIDDEN", "Invalid username or password")
        token = f"token-{next(self._ids)}"
        self.tokens[token] = user_id
        return httpx.Response(200, json={"user_id": user_id, "access_token": token})

    def _create_room(self, caller: str, body: dict[str, Any]) -> httpx.Response:
        alias_name = body.get("room_alias_name")
        full_alias = f"#{alias_name}:{self.server_name}" if alias_name else None
        if full_alias and full_alias in self.aliases:
            return _error(400, "M_ROOM_IN_USE", "Room alias already taken")
        room_id = f"!room{next(self._ids)}:{self.server_name}"
        self.rooms[room_id] = {
            "creator": caller,
            "alias": full_alias,
            "name": body.get("name"),
            "topic": body.get("topic"),
            "visibility": body.get("visibility"),
            "preset": body.get("preset"),
            "members": {caller},
            "events": [],
        }
        if full_alias:
            self.aliases[full_alias] = room_id
        return httpx.Response(200, json={"room_id": room_id})

    def _invite(self, caller: str, room_id: str, target: str) -> httpx.Response:
        room = self.rooms.get(room_id)
        if room is None or caller not in room["members"]:
            return _error(403, "M_FORBIDDEN", "You are not in this room")
        if target in room["members"]:
            return _error(403, "M_FORBIDDEN", f"{target} is already in the room")
        # Invitees are treated as joined immediately.
        room["members"].add(target)
        return httpx.Response(200, json={})

    def _kick(self, caller: str, room_id: str, target: str) -> httpx.Response:
        if caller != ADMIN_USER_ID:
            return _error(403, "M_FORBIDDEN", "Insufficient power level")
        room = self.rooms.get(room_id)
        if room is None or target not in room["members"]:
            return _error(403, "M_FORBIDDEN", "The target user is not in the room")
        room["members"].discard(target)
        return httpx.Response(200, json={})

    def _send(
        self, caller: str, token: str, room_id: str, txn_id: str, body: dict[str, Any]
    ) -> httpx.Response:
        room = self.rooms.get(room_id)
        if room is None or caller not in room["members"]:
            return _error(403, "M_FORBIDDEN", "You are not in this room")
        existing = self._sent.get((token, txn_id))
        if existing is None:
            existing = f"$event{next(self._ids)}"
            self._sent[(token, txn_id)] = existing
            room["events"].append(
                {
                    "type": "m.room.message",
                    "event_id": existing,
                    "sender": caller,
                    "content": body,
                }
            )
        return httpx.Response(200, json={"event_id": existing})


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture()
def fake_server() -> FakeChatServer:
    return FakeChatServer()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def chat_config() -> ChatConfig:
    return ChatConfig(
        enabled=True,
        base_url="http://chat.test",
        server_name=SERVER_NAME,
        admin_token=ADMIN_TOKEN,
        encryption_key=base64.b64encode(TEST_KEY).decode(),
        max_retries=3,
        retry_base_delay=0.5,
    )


@pytest.fixture()
async def chat_client(
    chat_config: ChatConfig, fake_server: FakeChatServer
) -> Any:
    client = ChatClient(chat_config, transport=fake_server.transport())
    try:
        yield client
    finally:
        await client.close()


@pytest.fixture()
def executor(recording_sleep: RecordingSleep) -> RemoteExecutor:
    return RemoteExecutor(RetryPolicy(max_retries=3, base_delay=0.5), sleep=recording_sleep)


@pytest.fixture()
def vault() -> CredentialVault:
    return CredentialVault(TEST_KEY)


@pytest.fixture()
async def chat_service(
    chat_config: ChatConfig,
    chat_client: ChatClient,
    executor: RemoteExecutor,
    vault: CredentialVault,
) -> Any:
    service = MatrixChatService(chat_config, client=chat_client, executor=executor, vault=vault)
    try:
        yield service
    finally:
        await service.dispatcher.drain()


# -- domain factories ------------------------------------------------------------


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make(email: str | None = None, display_name: str | None = None) -> User:
        user = User(
            email=email or f"user{next(_EMAIL_COUNTER)}@example.com",
            display_name=display_name,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_job(db_session: Session) -> Callable[..., Job]:
    def _make(creator: User, status: str = JOB_STATUS_OPEN, title: str = "Backend Engineer") -> Job:
        job = Job(
            title=title,
            description=f"{title} role",
            status=status,
            creator_id=creator.id,
        )
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job

    return _make


@pytest.fixture()
def make_application(db_session: Session) -> Callable[..., JobApplication]:
    def _make(job: Job, applicant: User, status: str = APPLICATION_STATUS_APPLIED) -> JobApplication:
        application = JobApplication(job_id=job.id, applicant_id=applicant.id, status=status)
        db_session.add(application)
        db_session.commit()
        db_session.refresh(application)
        return application

    return _make


@pytest.fixture()
def make_organization(db_session: Session) -> Callable[..., Organization]:
    def _make(owner: User, name: str = "Acme Hiring") -> Organization:
        organization = Organization(name=name, description="We hire", owner_id=owner.id)
        db_session.add(organization)
        db_session.commit()
        db_session.refresh(organization)
        return organization

    return _make
