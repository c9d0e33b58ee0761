"""
Shared fixtures for the reimbursement API tests.

No database is needed: ``FakeSession`` records every statement it is asked to
execute and answers with canned rows queued by the test. Routes are driven
through FastAPI's ``TestClient`` with ``get_db`` and ``get_current_user``
overridden.
"""

import pytest
from fastapi.testclient import TestClient

from reimbursement_api.database import get_db
from reimbursement_api.main import app
from reimbursement_api.routers.auth import UserResponse, get_current_user


class FakeResult:
    def __init__(self, rows=()):
        self._rows = [dict(row) for row in rows]

    def mappings(self):
        return self

    def all(self):
        return list(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None

    def scalar(self):
        if not self._rows:
            return None
        return next(iter(self._rows[0].values()))


class FakeSession:
    """Answers ``execute`` calls in order from ``results``; an exception entry is raised."""

    def __init__(self, results=()):
        self.results = list(results)
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def queue(self, *results):
        self.results.extend(results)

    def execute(self, statement, params=None):
        self.executed.append((str(statement), dict(params or {})))
        if not self.results:
            return FakeResult()
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result if isinstance(result, FakeResult) else FakeResult(result)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass

    @property
    def statements(self):
        return [sql for sql, _ in self.executed]


class FakeDBError(Exception):
    """Stand-in for a DBAPI error carrying a SQLSTATE."""

    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def make_user(role='employee', id=1, **overrides):
    data = dict(
        id=id,
        username=f'{role}{id}',
        email=f'{role}{id}@example.com',
        first_name=role.title(),
        last_name='User',
        role=role,
        is_active=True,
        manager_id=None,
        department_id=None,
    )
    data.update(overrides)
    return UserResponse(**data)


@pytest.fixture
def db():
    return FakeSession()


@pytest.fixture
def client_for(db):
    """``client_for(user)`` returns a TestClient authenticated as ``user`` (or anonymous for None)."""
    def _client(user=None):
        app.dependency_overrides[get_db] = lambda: db
        if user is not None:
            app.dependency_overrides[get_current_user] = lambda: user
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()
