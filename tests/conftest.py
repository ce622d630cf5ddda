import json
import os
from datetime import date, datetime

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BOOTSTRAP_JOBS_ON_IMPORT"] = "0"
os.environ["ENABLE_REMINDER_JOBS"] = "0"
os.environ["NOTIFICATION_API_KEY"] = "test-key"
os.environ["DEFAULT_TIMEZONE"] = "America/Chicago"
os.environ["OPENAI_API_KEY"] = ""

import pytest
import pytz

from models import CHANNEL_EMAIL, CHANNEL_PUSH, DeliveryEndpoint, Task, User, db
from reminder_occasions import NotificationContent


@pytest.fixture
def flask_app():
    import app as app_module

    app = app_module.app
    app.config.update(
        TESTING=True,
        NOTIFICATION_API_KEY="test-key",
        DEFAULT_TIMEZONE="America/Chicago",
        VAPID_PRIVATE_KEY=None,
        SMTP_HOST=None,
    )
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield app
        app_module.local_reminders().shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


def make_user(username="alice", email=None):
    user = User(username=username, email=email)
    db.session.add(user)
    db.session.commit()
    return user


def make_task(user, description, due_date=None, completed=False, created_at=None):
    task = Task(
        user_id=user.id,
        description=description,
        due_date=due_date,
        completed=completed,
        created_at=created_at or datetime(2026, 10, 1, 12, 0),
    )
    db.session.add(task)
    db.session.commit()
    return task


def make_push_endpoint(user, endpoint="https://push.example.com/sub/1"):
    record = DeliveryEndpoint(
        user_id=user.id,
        channel=CHANNEL_PUSH,
        payload=json.dumps({"endpoint": endpoint, "keys": {"p256dh": "p256dh-key", "auth": "auth-key"}}),
    )
    db.session.add(record)
    db.session.commit()
    return record


def make_email_endpoint(user, address="alice@example.com"):
    record = DeliveryEndpoint(user_id=user.id, channel=CHANNEL_EMAIL, payload=address)
    db.session.add(record)
    db.session.commit()
    return record


class FakeTimer:
    def __init__(self, delay, target, args=(), kwargs=None):
        self.delay = delay
        self.target = target
        self.args = args
        self.kwargs = kwargs or {}
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.target(*self.args, **self.kwargs)


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, target, args=(), kwargs=None):
        timer = FakeTimer(delay, target, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if not (t.cancelled or t.fired)]


class FakeNotifier:
    def __init__(self, permission="granted"):
        self._permission = permission
        self.shown = []

    def permission(self, user_id):
        return self._permission

    def show(self, user_id, title, options):
        self.shown.append((user_id, title, options))


class FixedContentProvider:
    def __init__(self):
        self.calls = []

    def generate(self, occasion, pending_count):
        self.calls.append((occasion, pending_count))
        return NotificationContent(title="Title", body=f"{pending_count} pending", tag=occasion.tag)


class RecordingPushSender:
    configured = True

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.sent = []
        self.attempts = []

    def send(self, endpoint, content, notification_type="scheduled-reminder"):
        self.attempts.append(endpoint.id)
        failure = self.failures.get(endpoint.id)
        if failure:
            raise failure
        self.sent.append((endpoint.id, content))


class RecordingEmailSender:
    configured = True

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.sent = []
        self.attempts = []

    def send(self, endpoint, user_tasks, content, today):
        self.attempts.append(endpoint.id)
        failure = self.failures.get(endpoint.id)
        if failure:
            raise failure
        self.sent.append((endpoint.id, user_tasks, content, today))


@pytest.fixture
def today():
    return date(2026, 10, 19)


@pytest.fixture
def now():
    # 10:00 in Chicago on 2026-10-19
    return datetime(2026, 10, 19, 15, 0, tzinfo=pytz.UTC)
