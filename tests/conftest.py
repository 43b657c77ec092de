from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from booklend.domain import User
from booklend.gateway import MemoryGateway
from booklend.lifecycle import LendingService
from booklend.notifications import NotificationDispatcher
from booklend.reminders import ReminderScheduler
from booklend.sessions import SessionRegistry


class FakeClock:
    def __init__(self, now=datetime(2025, 3, 10, 9, 0)):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingEmitter:
    def __init__(self):
        self.sent = []

    def __call__(self, event, payload, to=None):
        self.sent.append((event, payload, to))

    def events(self, event, to=None):
        return [p for e, p, sid in self.sent if e == event and (to is None or sid == to)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return MemoryGateway()


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def registry(emitter):
    return SessionRegistry(emit=emitter)


@pytest.fixture
def dispatcher(gateway, registry, clock):
    return NotificationDispatcher(gateway, registry, clock=clock)


@pytest.fixture
def service(gateway, dispatcher, clock):
    return LendingService(gateway, dispatcher, clock=clock)


@pytest.fixture
def reminders(gateway, dispatcher, clock):
    return ReminderScheduler(gateway, dispatcher, clock=clock)


@pytest.fixture
def users(gateway, clock):
    def add(name, email):
        return gateway.add_user(User(email=email, display_name=name, created_at=clock()))

    return SimpleNamespace(
        alice=add('Alice', 'alice@giki.edu.pk'),
        bob=add('Bob', '2020-CS-001@student.giki.edu.pk'),
        carol=add('Carol', 'carol@giki.edu.pk'),
    )


@pytest.fixture
def notes(gateway):
    def of(user, type=None):
        return [
            n for n in gateway.list_notifications(user.id)
            if type is None or n.type.value == type
        ]
    return of
