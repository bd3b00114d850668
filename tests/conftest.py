"""
Pytest configuration and fixtures.

Services talk to Supabase through coachhub.db.database, so tests swap the
client factories for an in-memory FakeSupabase that understands the subset of
the postgrest query builder the app uses.
"""
import copy
import os
import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

os.environ.setdefault("ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient

from coachhub.auth.auth import require_auth
from coachhub.core.config import settings
from coachhub.db import database
from coachhub.main import app
from coachhub.models.schemas import User


# =============================================================================
# Fake Supabase
# =============================================================================

class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable stand-in for a postgrest request builder."""

    def __init__(self, db, table):
        self.db = db
        self.table_name = table
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.count_mode = None
        self.filters = []
        self.sort = []
        self.limit_to = None
        self.window = None
        self.single_row = False

    # Actions
    def select(self, *columns, count=None):
        self.action = "select"
        self.count_mode = count
        return self

    def insert(self, rows):
        self.action, self.payload = "insert", rows
        return self

    def update(self, values):
        self.action, self.payload = "update", values
        return self

    def upsert(self, rows, on_conflict="id"):
        self.action, self.payload, self.on_conflict = "upsert", rows, on_conflict
        return self

    def delete(self):
        self.action = "delete"
        return self

    # Filters
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        expected = None if value in ("null", None) else value
        self.filters.append(lambda row: row.get(column) is expected)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) <= value)
        return self

    def ilike(self, column, pattern):
        regex = re.compile("^" + re.escape(pattern).replace("%", ".*") + "$", re.IGNORECASE)
        self.filters.append(lambda row: bool(regex.match(str(row.get(column) or ""))))
        return self

    # Modifiers
    def order(self, column, desc=False):
        self.sort.append((column, desc))
        return self

    def limit(self, count):
        self.limit_to = count
        return self

    def range(self, start, end):
        self.window = (start, end)
        return self

    def single(self):
        self.single_row = True
        return self

    maybe_single = single

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        rows = self.db.tables[self.table_name]

        if self.action == "insert":
            return FakeResult([self.db.add(self.table_name, r) for r in _as_list(self.payload)])

        if self.action == "upsert":
            keys = [k.strip() for k in self.on_conflict.split(",")]
            out = []
            for item in _as_list(self.payload):
                existing = next((r for r in rows if all(r.get(k) == item.get(k) for k in keys)), None)
                if existing is not None:
                    existing.update(copy.deepcopy(item))
                    out.append(copy.deepcopy(existing))
                else:
                    out.append(self.db.add(self.table_name, item))
            return FakeResult(out)

        matched = [r for r in rows if self._matches(r)]

        if self.action == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResult([copy.deepcopy(r) for r in matched])

        if self.action == "delete":
            self.db.tables[self.table_name] = [r for r in rows if not self._matches(r)]
            return FakeResult([copy.deepcopy(r) for r in matched])

        for column, desc in reversed(self.sort):
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else ""),
                         reverse=desc)
        total = len(matched)
        if self.window:
            matched = matched[self.window[0]:self.window[1] + 1]
        if self.limit_to is not None:
            matched = matched[:self.limit_to]

        data = [copy.deepcopy(r) for r in matched]
        if self.single_row:
            data = data[0] if data else None
        return FakeResult(data, count=total if self.count_mode else None)


def _as_list(payload):
    return payload if isinstance(payload, list) else [payload]


class FakeAuth:
    def __init__(self):
        self.users = {}

    def get_user(self, token):
        if token not in self.users:
            raise ValueError("invalid JWT")
        return SimpleNamespace(user=self.users[token])


class FakeSupabase:
    def __init__(self):
        self.tables = defaultdict(list)
        self.auth = FakeAuth()

    def table(self, name):
        return FakeQuery(self, name)

    def add(self, table, row):
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.tables[table].append(stored)
        return copy.deepcopy(stored)

    def seed(self, table, **row):
        return self.add(table, row)

    def rows(self, table, **where):
        return [r for r in self.tables[table] if all(r.get(k) == v for k, v in where.items())]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_db(monkeypatch):
    """In-memory Supabase used by every service."""
    fake = FakeSupabase()
    monkeypatch.setattr(database, "get_service_client", lambda: fake)
    monkeypatch.setattr(database, "get_supabase_client", lambda: fake)
    return fake


@pytest.fixture
def user():
    return User(id=uuid.uuid4(), email="coach@example.com")


@pytest.fixture
def team(fake_db, user):
    """A premium team owned by the test user."""
    row = fake_db.seed("teams", name="Eagles", level="high_school", user_id=str(user.id))
    now = datetime.now(timezone.utc)
    fake_db.seed(
        "subscriptions",
        team_id=row["id"],
        tier="premium",
        status="active",
        current_period_start=now.isoformat(),
        current_period_end=(now + timedelta(days=30)).isoformat(),
    )
    return row


@pytest.fixture
def token_balance(fake_db, team):
    now = datetime.now(timezone.utc)
    return fake_db.seed(
        "token_balance",
        team_id=team["id"],
        team_subscription_tokens_available=2,
        team_subscription_tokens_used_this_period=0,
        team_purchased_tokens_available=1,
        opponent_subscription_tokens_available=1,
        opponent_subscription_tokens_used_this_period=0,
        opponent_purchased_tokens_available=0,
        period_start=now.isoformat(),
        period_end=(now + timedelta(days=30)).isoformat(),
    )


@pytest.fixture
def client(fake_db, user):
    """Test client with the bearer-token check replaced by the test user."""
    app.dependency_overrides[require_auth] = lambda: user
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def gemini_configured(monkeypatch):
    monkeypatch.setattr(settings, "google_api_key", "test-key")


@pytest.fixture
def stripe_configured(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
    monkeypatch.setattr(settings, "stripe_price_plus_monthly", "price_plus_m")
    monkeypatch.setattr(settings, "stripe_price_premium_yearly", "price_premium_y")
