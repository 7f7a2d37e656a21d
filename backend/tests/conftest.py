from __future__ import annotations

import json
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable

import httpx
import pytest
import stripe
from fastapi.testclient import TestClient

from aktion.config import Settings
from aktion.deps import get_http_client, get_payments, get_settings, get_supabase
from main import app

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


# =====================================================
# Supabase
# =====================================================
class _Result:
    def __init__(self, data: Any) -> None:
        self.data = data


class _Query:
    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table = table
        self.action = "select"
        self.payload: Any = None
        self.filters: list[Callable[[dict], bool]] = []
        self.ordering: tuple[str, bool] | None = None
        self.row_limit: int | None = None

    def select(self, columns: str = "*") -> "_Query":
        self.action = "select"
        return self

    def insert(self, rows: Any) -> "_Query":
        self.action, self.payload = "insert", rows
        return self

    def update(self, values: dict) -> "_Query":
        self.action, self.payload = "update", values
        return self

    def upsert(self, values: dict) -> "_Query":
        self.action, self.payload = "upsert", values
        return self

    def delete(self) -> "_Query":
        self.action = "delete"
        return self

    def eq(self, column: str, value: Any) -> "_Query":
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value: Any) -> "_Query":
        self.filters.append(lambda row: row.get(column) is not None and row[column] != value)
        return self

    def is_(self, column: str, value: Any) -> "_Query":
        expected = None if value in (None, "null") else value
        self.filters.append(lambda row: row.get(column) is expected)
        return self

    def gt(self, column: str, value: Any) -> "_Query":
        self.filters.append(lambda row: row.get(column) is not None and row[column] > value)
        return self

    def order(self, column: str, desc: bool = False) -> "_Query":
        self.ordering = (column, desc)
        return self

    def limit(self, count: int) -> "_Query":
        self.row_limit = count
        return self

    def execute(self) -> _Result:
        return self.db._execute(self)


class FakeAuth:
    def __init__(self) -> None:
        self.tokens: dict[str, SimpleNamespace] = {}

    def add_user(self, token: str, user_id: str, email: str = "user@example.com") -> None:
        self.tokens[token] = SimpleNamespace(id=user_id, email=email)

    def get_user(self, token: str) -> SimpleNamespace | None:
        user = self.tokens.get(token)
        return SimpleNamespace(user=user) if user else None


class FakeSupabase:
    """In-memory stand-in for the PostgREST query builder used by the routers."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.auth = FakeAuth()
        self.insert_errors: dict[str, Exception] = {}
        self._clock = 0

    def table(self, name: str) -> _Query:
        return _Query(self, name)

    def seed(self, table: str, *rows: dict) -> None:
        for row in rows:
            self._store(table, row)

    def rows(self, table: str) -> list[dict]:
        return self.tables[table]

    def _store(self, table: str, row: dict) -> dict:
        self._clock += 1
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", (_EPOCH + timedelta(seconds=self._clock)).isoformat())
        self.tables[table].append(stored)
        return stored

    def _execute(self, query: _Query) -> _Result:
        rows = self.tables[query.table]
        matched = [row for row in rows if all(f(row) for f in query.filters)]

        if query.action == "select":
            if query.ordering:
                column, desc = query.ordering
                matched.sort(
                    key=lambda row: (row.get(column) is not None, row.get(column) or 0),
                    reverse=desc,
                )
            if query.row_limit is not None:
                matched = matched[: query.row_limit]
            return _Result([dict(row) for row in matched])

        if query.action == "insert":
            if query.table in self.insert_errors:
                raise self.insert_errors[query.table]
            payload = query.payload if isinstance(query.payload, list) else [query.payload]
            return _Result([dict(self._store(query.table, row)) for row in payload])

        if query.action == "update":
            for row in matched:
                row.update(query.payload)
            return _Result([dict(row) for row in matched])

        if query.action == "upsert":
            existing = [row for row in rows if row.get("id") == query.payload.get("id")]
            if existing:
                existing[0].update(query.payload)
                return _Result([dict(existing[0])])
            return _Result([dict(self._store(query.table, query.payload))])

        if query.action == "delete":
            self.tables[query.table] = [row for row in rows if row not in matched]
            return _Result([dict(row) for row in matched])

        raise AssertionError(f"unsupported action {query.action}")


# =====================================================
# Stripe
# =====================================================
STRIPE_TEST_KEY = "sk_test_key"


class FakePayments:
    """Records calls as plain dicts and hands back real StripeObjects, like the SDK."""

    def __init__(self) -> None:
        self.intents: dict[str, dict] = {}
        self.sessions: list[dict] = []
        self.subscriptions: dict[str, dict] = {}
        self.error: Exception | None = None

    def create_payment_intent(
        self,
        *,
        amount: int,
        metadata: dict,
        currency: str = "usd",
        receipt_email: str | None = None,
        description: str | None = None,
    ) -> stripe.PaymentIntent:
        if self.error:
            raise self.error
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "id": intent_id,
            "object": "payment_intent",
            "client_secret": f"{intent_id}_secret",
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "receipt_email": receipt_email,
            "description": description,
            "status": "requires_payment_method",
        }
        return self.retrieve_payment_intent(intent_id)

    def retrieve_payment_intent(self, intent_id: str) -> stripe.PaymentIntent:
        return stripe.PaymentIntent.construct_from(self.intents[intent_id], STRIPE_TEST_KEY)

    def create_checkout_session(self, **params: Any) -> stripe.checkout.Session:
        self.sessions.append(params)
        return stripe.checkout.Session.construct_from(
            {"id": "cs_test_1", "object": "checkout.session", "url": "https://checkout.stripe.test/cs_test_1"},
            STRIPE_TEST_KEY,
        )

    def retrieve_subscription(self, subscription_id: str) -> stripe.Subscription:
        return stripe.Subscription.construct_from(
            self.subscriptions[subscription_id], STRIPE_TEST_KEY
        )

    def construct_event(self, payload: bytes, signature: str) -> stripe.Event:
        if signature != "valid-signature":
            raise stripe.SignatureVerificationError("No signatures found", signature)
        return stripe.Event.construct_from(json.loads(payload), STRIPE_TEST_KEY)


# =====================================================
# Upstream HTTP
# =====================================================
class Upstream:
    """Scripted responses for the httpx MockTransport; records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[Callable[[], httpx.Response]]] = {}

    def on(self, method: str, path: str, *responses: Any) -> None:
        """Register responses for a route; the last one repeats once the others are used."""
        factories = []
        for entry in responses:
            if isinstance(entry, tuple):
                status, body = entry
            else:
                status, body = 200, entry
            factories.append(self._factory(status, body))
        self.routes[(method, path)] = factories

    @staticmethod
    def _factory(status: int, body: Any) -> Callable[[], httpx.Response]:
        if isinstance(body, bytes):
            return lambda: httpx.Response(status, content=body)
        if isinstance(body, str):
            return lambda: httpx.Response(status, text=body)
        return lambda: httpx.Response(status, json=body)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        factories = self.routes.get((request.method, request.url.path))
        if not factories:
            return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")
        if len(factories) > 1:
            return factories.pop(0)()
        return factories[0]()


# =====================================================
# Fixtures
# =====================================================
@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_url="https://db.test",
        supabase_service_key="service-key",
        stripe_secret_key="sk_test_key",
        stripe_webhook_secret="whsec_test",
        stripe_price_hobbyist="price_hobbyist",
        stripe_price_indie="price_indie",
        stripe_price_pro="price_pro",
        a2e_api_key="a2e-key",
        a2e_base_url="https://a2e.test/api/v1",
        a2e_poll_interval_seconds=0,
        a2e_poll_max_attempts=3,
        openai_api_key="openai-key",
        openai_base_url="https://openai.test/v1",
        runcomfy_api_token="runcomfy-token",
        runcomfy_base_url="https://runcomfy.test/v1",
        runcomfy_deployment_id="deployment-1",
        runcomfy_user_id="studio",
        wan_fun_inp_deployment_id="wan-deployment",
        runcomfy_poll_interval_seconds=0,
        runcomfy_poll_max_attempts=3,
        site_url="https://aktion.test",
    )


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def payments() -> FakePayments:
    return FakePayments()


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def client(test_settings, fake_db, payments, upstream):
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_supabase] = lambda: fake_db
    app.dependency_overrides[get_payments] = lambda: payments
    app.dependency_overrides[get_http_client] = lambda: http
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def a2e_ok(data: Any = None) -> dict:
    return {"code": 0, "data": data, "message": "success"}


def a2e_error(message: str, code: int = 1001) -> dict:
    return {"code": code, "data": None, "message": message}
