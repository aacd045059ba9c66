# scripts/testing/conftest.py
"""In-memory stand-ins for the auth backend, the profiles table and supabase queries"""
import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from heather_main.core.session_controller import SessionController
from heather_main.lib.errors import AuthenticationError, PersistenceError
from heather_main.lib.navigation import NavigationRouter
from heather_main.models import AuthResult, Found, LookupFailed, NotFound, Session


def make_session(email: str = "jane@example.com", **metadata) -> Session:
    local_part = email.split("@")[0]
    return Session(
        user_id=f"user-{local_part}",
        email=email,
        user_metadata=metadata,
        access_token=f"token-{local_part}",
    )


class FakeSubscription:
    def __init__(self, backend, callback):
        self.backend = backend
        self.callback = callback
        self.unsubscribed = False

    def unsubscribe(self):
        self.unsubscribed = True
        if self.callback in self.backend.callbacks:
            self.backend.callbacks.remove(self.callback)


class FakeAuthBackend:
    def __init__(self, session: Optional[Session] = None, passwords: Optional[Dict[str, str]] = None):
        self.session = session
        self.passwords = passwords or {}
        self.callbacks: List = []
        self.subscriptions: List[FakeSubscription] = []

        self.get_session_error: Optional[Exception] = None
        self.get_session_gate: Optional[asyncio.Event] = None
        self.emit_on_get_session = False
        self.sign_up_error: Optional[str] = None
        self.confirm_email = False
        self.sign_out_error: Optional[Exception] = None

        self.sign_up_calls: List[Dict[str, Any]] = []
        self.sign_out_calls = 0

    def emit(self, event: str, session: Optional[Session]):
        for callback in list(self.callbacks):
            callback(event, session)

    def on_auth_state_change(self, callback):
        self.callbacks.append(callback)
        subscription = FakeSubscription(self, callback)
        self.subscriptions.append(subscription)
        return subscription

    async def get_session(self):
        if self.get_session_gate is not None:
            await self.get_session_gate.wait()
        if self.get_session_error is not None:
            raise self.get_session_error
        if self.emit_on_get_session and self.session is not None:
            self.emit("SIGNED_IN", self.session)
        return self.session

    async def sign_in_with_password(self, email, password):
        if self.passwords.get(email) != password:
            raise AuthenticationError("Invalid login credentials")
        self.session = make_session(email)
        self.emit("SIGNED_IN", self.session)
        return AuthResult(user_id=self.session.user_id, session=self.session)

    async def sign_up(self, email, password, metadata, redirect_to):
        self.sign_up_calls.append({
            "email": email, "password": password, "metadata": metadata, "redirect_to": redirect_to,
        })
        if self.sign_up_error:
            raise AuthenticationError(self.sign_up_error)
        session = make_session(email, **metadata)
        if self.confirm_email:
            return AuthResult(user_id=session.user_id, session=None)
        self.session = session
        self.emit("SIGNED_IN", session)
        return AuthResult(user_id=session.user_id, session=session)

    async def sign_out(self):
        self.sign_out_calls += 1
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.session = None
        self.emit("SIGNED_OUT", None)


class FakeProfileStore:
    def __init__(self, rows: Optional[Dict[str, Dict[str, Any]]] = None):
        self.rows = rows or {}
        self.hang = False
        self.lookup_error: Optional[str] = None
        self.raise_on_select: Optional[Exception] = None
        self.update_error = False
        self.upsert_error = False

        self.select_calls = 0
        self.updates: List = []
        self.upserts: List[Dict[str, Any]] = []

    async def select(self, user_id):
        self.select_calls += 1
        if self.hang:
            await asyncio.Event().wait()
        if self.raise_on_select is not None:
            raise self.raise_on_select
        if self.lookup_error:
            return LookupFailed(reason=self.lookup_error)
        row = self.rows.get(user_id)
        return Found(row=dict(row)) if row else NotFound()

    async def update(self, user_id, fields):
        self.updates.append((user_id, fields))
        if self.update_error:
            raise PersistenceError("connection reset")
        if user_id in self.rows:
            self.rows[user_id].update(fields)

    async def upsert(self, row):
        self.upserts.append(row)
        if self.upsert_error:
            raise PersistenceError("duplicate key value")
        self.rows[row["id"]] = dict(row)


class FakeQuery:
    """Chainable stand-in for a postgrest request builder"""

    def __init__(self, table: str, log: List, data=None, error: Optional[Exception] = None):
        self.table = table
        self.log = log
        self.data = data if data is not None else []
        self.error = error

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.log.append((self.table, name, args, kwargs))
            return self
        return record

    async def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.data)


class FakeChannel:
    """Realtime channel that replays queued payloads once subscribed"""

    def __init__(self, topic: str, payloads: List[Dict[str, Any]]):
        self.topic = topic
        self.payloads = payloads
        self.bindings: List[Dict[str, Any]] = []
        self.subscribed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.bindings.append({"event": event, "table": table, "schema": schema, "filter": filter, "callback": callback})
        return self

    async def subscribe(self):
        self.subscribed = True
        for payload in self.payloads:
            for binding in self.bindings:
                binding["callback"](payload)
        return self


class FakeSupabaseClient:
    def __init__(self):
        self.log: List = []
        self.responses: Dict[str, Any] = {}
        self.errors: Dict[str, Exception] = {}
        self.realtime_payloads: List[Dict[str, Any]] = []
        self.channels: List[FakeChannel] = []
        self.removed_channels: List[FakeChannel] = []
        self.remove_error: Optional[Exception] = None

    def table(self, name):
        return FakeQuery(name, self.log, self.responses.get(name), self.errors.get(name))

    def channel(self, topic):
        channel = FakeChannel(topic, self.realtime_payloads)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel):
        if self.remove_error is not None:
            raise self.remove_error
        self.removed_channels.append(channel)


@pytest.fixture
def auth_backend():
    return FakeAuthBackend(passwords={"jane@example.com": "secret", "dr.smith@example.com": "secret"})


@pytest.fixture
def profile_store():
    return FakeProfileStore()


@pytest.fixture
def router():
    return NavigationRouter()


@pytest.fixture
def controller(auth_backend, profile_store, router):
    controller = SessionController(
        auth_backend, profile_store, router,
        redirect_to="http://localhost:3000/",
        profile_timeout=0.2,
    )
    yield controller
    controller.stop()
