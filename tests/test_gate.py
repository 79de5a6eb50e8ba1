"""Request gate: token extraction, fail-closed lookups, CSRF and audit."""

import asyncio
import uuid

import pytest
from starlette.requests import Request

from backoffice.core.errors import (
    CSRFMismatch,
    Expired,
    Forbidden,
    InvalidCredentials,
    Malformed,
    NotFound,
    StorageError,
)
from backoffice.services import auth_service, csrf_service
from backoffice.services.gate_service import RequestGate
from backoffice.services.memory_session_store import MemorySessionStore


def make_request(method="GET", cookies=None, headers=None):
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    if cookies:
        raw_headers.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode()))
    return Request(
        {
            "type": "http",
            "method": method,
            "path": "/",
            "query_string": b"",
            "headers": raw_headers,
        }
    )


class SlowStore(MemorySessionStore):
    async def _validate(self, token, now):
        await asyncio.sleep(1)
        return await super()._validate(token, now)


class BrokenStore(MemorySessionStore):
    async def _validate(self, token, now):
        raise StorageError("connection refused")


class RefusingStore(MemorySessionStore):
    async def _validate(self, token, now):
        raise ConnectionRefusedError(111, "Connect call failed")


class ExplodingSink:
    def record(self, event):
        raise RuntimeError("audit backend down")


@pytest.fixture
def gate(memory_store, audit_sink):
    return RequestGate(memory_store, audit_sink)


class TestExtraction:
    def test_cookie_wins(self, gate):
        request = make_request(
            cookies={"session_token": "from-cookie"},
            headers={"Authorization": "Session from-header"},
        )
        assert gate.extract_session_token(request) == "from-cookie"

    def test_authorization_header(self, gate):
        assert gate.extract_session_token(make_request(headers={"Authorization": "Session abc"})) == "abc"
        assert gate.extract_session_token(make_request(headers={"Authorization": "Bearer abc"})) is None

    def test_session_header(self, gate):
        assert gate.extract_session_token(make_request(headers={"X-Session-Token": "abc"})) == "abc"

    def test_nothing_supplied(self, gate):
        assert gate.extract_session_token(make_request()) is None

    async def test_csrf_from_header(self, gate):
        request = make_request("POST", headers={"X-CSRF-Token": "tok"})
        assert await gate.extract_csrf_token(request) == "tok"

    async def test_csrf_absent_on_json(self, gate):
        request = make_request("POST", headers={"Content-Type": "application/json"})
        assert await gate.extract_csrf_token(request) is None


class TestAuthenticate:
    async def test_valid_session(self, gate, memory_store):
        record = await memory_store.create(uuid.uuid4(), "trainer")
        ctx = await gate.authenticate(make_request(cookies={"session_token": record.token}))
        assert ctx.user_id == record.user_id

    async def test_missing_token(self, gate, audit_sink):
        with pytest.raises(NotFound):
            await gate.authenticate(make_request())
        event = audit_sink.events[-1]
        assert event.decision == "denied"
        assert event.actor is None
        assert event.reason == "missing_token"

    async def test_malformed_token(self, gate, audit_sink):
        with pytest.raises(Malformed):
            await gate.authenticate(make_request(headers={"X-Session-Token": "bad token!"}))
        assert audit_sink.events[-1].reason == "malformed_token"

    async def test_expired_is_audited_with_reason(self, gate, memory_store, audit_sink, clock):
        record = await memory_store.create(uuid.uuid4(), "trainer")
        clock.advance(days=2)
        with pytest.raises(Expired):
            await gate.authenticate(make_request(cookies={"session_token": record.token}))
        assert audit_sink.events[-1].reason == "session_expired"

    async def test_lookup_timeout_fails_closed(self, clock, audit_sink):
        store = SlowStore(clock=clock)
        record = await store.create(uuid.uuid4(), "admin")
        gate = RequestGate(store, audit_sink, lookup_timeout=0.05)
        with pytest.raises(StorageError) as exc_info:
            await gate.authenticate(make_request(cookies={"session_token": record.token}))
        assert exc_info.value.status_code == 500
        assert audit_sink.events[-1].reason == "session_lookup_timeout"

    async def test_storage_error_fails_closed(self, clock, audit_sink):
        gate = RequestGate(BrokenStore(clock=clock), audit_sink)
        with pytest.raises(StorageError):
            await gate.authenticate(make_request(cookies={"session_token": "abc"}))
        assert audit_sink.events[-1].decision == "denied"

    async def test_unwrapped_backend_error_fails_closed(self, clock, audit_sink):
        gate = RequestGate(RefusingStore(clock=clock), audit_sink)
        with pytest.raises(StorageError) as exc_info:
            await gate.authenticate(make_request(cookies={"session_token": "abc"}))
        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)
        assert len(audit_sink.events) == 1
        event = audit_sink.events[0]
        assert (event.decision, event.reason) == ("denied", "session_lookup_failed")

    async def test_audit_failure_does_not_block(self, memory_store):
        gate = RequestGate(memory_store, ExplodingSink())
        record = await memory_store.create(uuid.uuid4(), "admin")
        ctx = await gate.authenticate_and_authorize(
            make_request(cookies={"session_token": record.token}), "user", "read"
        )
        assert ctx.user_id == record.user_id
        with pytest.raises(NotFound):
            await gate.authenticate(make_request())


class TestCsrfEnforcement:
    async def test_safe_method_needs_no_csrf(self, gate, memory_store):
        record = await memory_store.create(uuid.uuid4(), "trainer")
        await gate.authenticate(make_request("GET", cookies={"session_token": record.token}))

    async def test_mutation_without_csrf(self, gate, memory_store, audit_sink):
        record = await memory_store.create(uuid.uuid4(), "trainer")
        with pytest.raises(CSRFMismatch):
            await gate.authenticate(make_request("POST", cookies={"session_token": record.token}))
        event = audit_sink.events[-1]
        assert event.actor == record.user_id
        assert event.reason == "csrf_missing"

    async def test_mutation_with_wrong_csrf(self, gate, memory_store):
        record = await memory_store.create(uuid.uuid4(), "trainer")
        other = await memory_store.create(uuid.uuid4(), "trainer")
        request = make_request(
            "PUT",
            cookies={"session_token": record.token},
            headers={"X-CSRF-Token": csrf_service.issue(other)},
        )
        with pytest.raises(CSRFMismatch):
            await gate.authenticate(request)

    async def test_mutation_with_csrf(self, gate, memory_store):
        record = await memory_store.create(uuid.uuid4(), "trainer")
        request = make_request(
            "DELETE",
            cookies={"session_token": record.token},
            headers={"X-CSRF-Token": csrf_service.issue(record)},
        )
        ctx = await gate.authenticate(request)
        assert ctx.session_id == record.id

    async def test_custom_header_name(self, memory_store, audit_sink):
        gate = RequestGate(memory_store, audit_sink, csrf_header="X-XSRF")
        record = await memory_store.create(uuid.uuid4(), "trainer")
        request = make_request(
            "POST",
            cookies={"session_token": record.token},
            headers={"X-XSRF": csrf_service.issue(record)},
        )
        await gate.authenticate(request)


class TestAuthorize:
    async def test_allowed_is_audited(self, gate, memory_store, audit_sink):
        record = await memory_store.create(uuid.uuid4(), "trainer")
        await gate.authenticate_and_authorize(
            make_request(cookies={"session_token": record.token}), "material", "read"
        )
        event = audit_sink.events[-1]
        assert (event.actor, event.action, event.resource, event.decision) == (
            record.user_id,
            "read",
            "material",
            "allowed",
        )

    async def test_denied_carries_required_role(self, gate, memory_store, audit_sink):
        record = await memory_store.create(uuid.uuid4(), "instructor")
        with pytest.raises(Forbidden) as exc_info:
            await gate.authenticate_and_authorize(
                make_request(cookies={"session_token": record.token}), "student", "read"
            )
        assert exc_info.value.required == "trainer"
        assert exc_info.value.public_message == "Not permitted"
        assert audit_sink.events[-1].decision == "denied"

    async def test_owner_id_sets_ownership(self, gate, memory_store):
        record = await memory_store.create(uuid.uuid4(), "instructor")
        request = make_request(cookies={"session_token": record.token})
        await gate.authenticate_and_authorize(request, "profile", "read", owner_id=record.user_id)
        with pytest.raises(Forbidden):
            await gate.authenticate_and_authorize(request, "profile", "read", owner_id=uuid.uuid4())

    async def test_one_event_per_decision(self, gate, memory_store, audit_sink):
        record = await memory_store.create(uuid.uuid4(), "admin")
        await gate.authenticate_and_authorize(
            make_request(cookies={"session_token": record.token}), "company", "read"
        )
        assert len(audit_sink.events) == 1


class TestLoginThenAct:
    async def test_trainer_creates_material(self, directory, memory_store, audit_sink, password):
        result = await auth_service.login(
            "trainer@training.example",
            password,
            directory=directory,
            store=memory_store,
            audit_sink=audit_sink,
        )
        gate = RequestGate(memory_store, audit_sink)
        request = make_request(
            "POST",
            cookies={"session_token": result.session_token},
            headers={"X-CSRF-Token": result.csrf_token},
        )
        ctx = await gate.authenticate_and_authorize(request, "material", "write")
        assert ctx.user_id == result.user_id

        with pytest.raises(Forbidden):
            await gate.authenticate_and_authorize(request, "company", "write")

        await auth_service.logout(result.session_token, ctx, store=memory_store, audit_sink=audit_sink)
        with pytest.raises(NotFound):
            await gate.authenticate(request)

        assert [e.action for e in audit_sink.events if e.resource == "session" and e.actor] == ["login", "logout"]

    async def test_failed_login_is_audited(self, directory, memory_store, audit_sink):
        with pytest.raises(InvalidCredentials):
            await auth_service.login(
                "trainer@training.example",
                "nope",
                directory=directory,
                store=memory_store,
                audit_sink=audit_sink,
            )
        event = audit_sink.events[-1]
        assert (event.action, event.decision, event.reason) == ("login", "denied", "invalid_credentials")

    async def test_revoke_user_sessions(self, memory_store, audit_sink, clock):
        target = uuid.uuid4()
        for _ in range(3):
            await memory_store.create(target, "trainer")
            clock.advance(seconds=1)
        admin = await memory_store.create(uuid.uuid4(), "admin")
        admin_ctx = await memory_store.validate(admin.token)

        revoked = await auth_service.revoke_user_sessions(target, admin_ctx, store=memory_store, audit_sink=audit_sink)
        assert revoked == 3
        assert audit_sink.events[-1].action == "sessions_revoked"
        assert await memory_store.count_active(target) == 0


class TestAuthenticateSession:
    async def test_success_emits_one_allowed_event(self, gate, memory_store, audit_sink):
        record = await memory_store.create(uuid.uuid4(), "instructor")
        ctx = await gate.authenticate_session(make_request(cookies={"session_token": record.token}))
        assert ctx.user_id == record.user_id
        assert len(audit_sink.events) == 1
        event = audit_sink.events[0]
        assert (event.actor, event.action, event.resource, event.decision) == (
            record.user_id,
            "get",
            "session",
            "allowed",
        )

    async def test_failure_emits_one_denied_event(self, gate, audit_sink):
        with pytest.raises(NotFound):
            await gate.authenticate_session(make_request())
        assert [e.decision for e in audit_sink.events] == ["denied"]
