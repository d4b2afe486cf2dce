"""Shared fixtures: a fake Mantis server behind a mocked requests.Session."""

import json
from unittest.mock import Mock

import pytest
import requests

from mantis_mcp.cache import RequestCache
from mantis_mcp.gateway import MantisGateway
from mantis_mcp.http_client import MantisHttpClient

BASE_URL = "https://mantis.example.com/api/rest"

REASONS = {200: "OK", 201: "Created", 204: "No Content", 403: "Forbidden",
           404: "Not Found", 500: "Internal Server Error"}


def make_response(status_code=200, body=None, text=None):
    """Real requests.Response with a canned body."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = REASONS.get(status_code, "")
    response.url = BASE_URL
    if body is not None:
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    elif text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = b""
    return response


def make_issue(issue_id, status="new", status_id=10, handler=None, created_at="2024-05-01T10:00:00+00:00", **extra):
    issue = {
        "id": issue_id,
        "summary": f"Issue {issue_id}",
        "description": "",
        "status": {"id": status_id, "name": status},
        "project": {"id": 1, "name": "Main"},
        "category": {"id": 1, "name": "General"},
        "reporter": {"id": 1, "name": "admin", "email": "admin@example.com"},
        "created_at": created_at,
        "updated_at": created_at,
    }
    if handler is not None:
        issue["handler"] = handler
    issue.update(extra)
    return issue


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeMantis:
    """
    Routes session.request calls to canned responses by (method, path).

    A route holding several responses returns them in turn and then keeps
    repeating the last one. Exceptions in a route are raised.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, *responses):
        self.routes[(method, path)] = list(responses)

    def count(self, method, path):
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    def __call__(self, method, url, **kwargs):
        path = url[len(BASE_URL):]
        self.calls.append((method, path, kwargs))
        responses = self.routes.get((method, path))
        if responses is None:
            return make_response(404, {"message": f"no route for {method} {path}"})
        result = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_mantis():
    return FakeMantis()


@pytest.fixture
def session(fake_mantis):
    session = Mock(spec=requests.Session)
    session.headers = {}
    session.request.side_effect = fake_mantis
    return session


@pytest.fixture
def http(session):
    return MantisHttpClient(BASE_URL, "secret-key", session=session)


@pytest.fixture
def gateway(http, clock):
    return MantisGateway(
        http,
        cache=RequestCache(enabled=True, ttl_seconds=300, clock=clock),
        user_cache=RequestCache(enabled=True, ttl_seconds=300, clock=clock),
    )
