"""Shared fixtures."""

from __future__ import annotations

import copy

import pytest

from edgeroute.core.models import validate_routes

CASINO_ROUTES = [
    {
        "id": "casino-ru-mobile",
        "match": {
            "path": "^/casino/([^/?#]+)",
            "countries": ["RU"],
            "devices": ["mobile"],
            "bots": False,
        },
        "action": {
            "type": "redirect",
            "target": "https://partner.example/go",
            "query": {"bonus": {"fromPathGroup": 1}},
        },
    },
    {
        "id": "ping",
        "match": {"path": "/__edge/ping"},
        "action": {"type": "response", "status": 200, "bodyText": "pong"},
    },
]


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def casino_routes():
    return validate_routes(CASINO_ROUTES)


@pytest.fixture
def casino_payload():
    return copy.deepcopy(CASINO_ROUTES)
