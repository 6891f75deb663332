"""Shared fixtures: a controllable clock, platforms built on it, and funding."""

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ledger.api import app, get_platform
from ledger.config import ConfigProvider
from ledger.models import EntryKind
from ledger.platform import TaskPlatform
from ledger.service import LedgerService
from ledger.settings import Settings

START = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return LedgerService(clock=clock)


@pytest.fixture
def make_platform(clock):
    def build(config=None, users=None, **overrides):
        settings = Settings(_env_file=None, **overrides)
        provider = ConfigProvider(config) if config is not None else None
        return TaskPlatform(config=provider, users=users, settings=settings, clock=clock)
    return build


@pytest.fixture
def task_platform(make_platform):
    return make_platform()


@pytest.fixture
def fund(task_platform):
    counter = itertools.count(1)

    def credit(user_id, amount, target=None):
        service = (target or task_platform).ledger
        return service.credit(user_id, Decimal(amount), EntryKind.RECHARGE, f"seed-{next(counter)}")
    return credit


@pytest.fixture
def client(task_platform):
    app.dependency_overrides[get_platform] = lambda: task_platform
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
