import json
import smtplib
from datetime import timedelta
from types import SimpleNamespace

import pytest
from pywebpush import WebPushException

from backend.delivery import EmailSender, PushSender, build_reminder_html, build_reminder_subject
from backend.endpoint_lifecycle import EndpointLifecycleManager
from backend.reminder_errors import PermanentDeliveryError, TransientDeliveryError
from backend.subscriber_grouping import UserDueTasks
from models import DeliveryEndpoint, db
from reminder_occasions import NotificationContent
from conftest import make_email_endpoint, make_push_endpoint, make_task, make_user


CONTENT = NotificationContent(title="🌅 Good Morning!", body="You have 2 tasks pending.", tag="morning-reminder")


def _push_failure(status):
    def send(**kwargs):
        response = SimpleNamespace(status_code=status, text="gone") if status else None
        raise WebPushException("push failed", response=response)
    return send


def test_push_payload_shape(flask_app):
    calls = []
    sender = PushSender("private", "ops@example.com", icon="/icon.png", url="/todos",
                        send=lambda **kwargs: calls.append(kwargs))
    endpoint = make_push_endpoint(make_user())

    sender.send(endpoint, CONTENT)

    assert len(calls) == 1
    payload = json.loads(calls[0]["data"])
    assert payload == {
        "title": CONTENT.title,
        "body": CONTENT.body,
        "tag": "morning-reminder",
        "icon": "/icon.png",
        "badge": "/icon.png",
        "data": {"url": "/todos", "type": "scheduled-reminder"},
    }
    assert calls[0]["subscription_info"]["endpoint"] == "https://push.example.com/sub/1"
    assert calls[0]["vapid_claims"] == {"sub": "mailto:ops@example.com"}
    assert calls[0]["vapid_private_key"] == "private"


@pytest.mark.parametrize("status", [404, 410])
def test_push_gone_is_permanent(flask_app, status):
    endpoint = make_push_endpoint(make_user())
    with pytest.raises(PermanentDeliveryError) as exc_info:
        PushSender("private", "ops@example.com", send=_push_failure(status)).send(endpoint, CONTENT)
    assert exc_info.value.status_code == status


@pytest.mark.parametrize("status", [429, 500, None])
def test_push_other_failures_are_transient(flask_app, status):
    endpoint = make_push_endpoint(make_user())
    with pytest.raises(TransientDeliveryError):
        PushSender("private", "ops@example.com", send=_push_failure(status)).send(endpoint, CONTENT)


def test_push_network_error_is_transient(flask_app):
    def send(**kwargs):
        raise ConnectionError("reset")

    endpoint = make_push_endpoint(make_user())
    with pytest.raises(TransientDeliveryError):
        PushSender("private", "ops@example.com", send=send).send(endpoint, CONTENT)


class FakeSMTP:
    instances = []

    def __init__(self, host, port, error=None):
        self.host = host
        self.port = port
        self.error = error
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.login_args = (user, password)

    def sendmail(self, from_addr, to_addrs, message):
        if self.error:
            raise self.error
        self.messages.append((from_addr, to_addrs, message))


def _user_tasks(user, today):
    overdue = make_task(user, "Pay <Visa> bill", today - timedelta(days=3))
    due = make_task(user, "Call bank", today)
    return UserDueTasks(user.id, overdue=[overdue], due_today=[due])


def test_email_send(flask_app, today):
    FakeSMTP.instances = []
    user = make_user()
    endpoint = make_email_endpoint(user)
    sender = EmailSender("smtp.example.com", 587, "bot", "secret", "bot@example.com",
                         smtp_factory=lambda host, port: FakeSMTP(host, port))

    sender.send(endpoint, _user_tasks(user, today), CONTENT, today)

    smtp = FakeSMTP.instances[0]
    assert smtp.login_args == ("bot", "secret")
    from_addr, to_addrs, _ = smtp.messages[0]
    assert from_addr == "bot@example.com"
    assert to_addrs == ["alice@example.com"]


def test_email_recipient_refused_is_permanent(flask_app, today):
    user = make_user()
    endpoint = make_email_endpoint(user)
    refused = smtplib.SMTPRecipientsRefused({"alice@example.com": (550, b"no such user")})
    sender = EmailSender("smtp.example.com", smtp_factory=lambda host, port: FakeSMTP(host, port, refused),
                         from_addr="bot@example.com")
    with pytest.raises(PermanentDeliveryError) as exc_info:
        sender.send(endpoint, _user_tasks(user, today), CONTENT, today)
    assert exc_info.value.status_code == 550


@pytest.mark.parametrize("code", [450, 451, 452])
def test_email_recipient_deferred_keeps_endpoint(flask_app, today, code):
    user = make_user()
    endpoint = make_email_endpoint(user)
    deferred = smtplib.SMTPRecipientsRefused({"alice@example.com": (code, b"4.7.1 greylisted, try later")})
    sender = EmailSender("smtp.example.com", smtp_factory=lambda host, port: FakeSMTP(host, port, deferred),
                         from_addr="bot@example.com")

    with pytest.raises(TransientDeliveryError) as exc_info:
        sender.send(endpoint, _user_tasks(user, today), CONTENT, today)

    assert exc_info.value.status_code == code
    assert EndpointLifecycleManager().handle_failure(endpoint, exc_info.value) is False
    assert db.session.get(DeliveryEndpoint, endpoint.id) is not None


def test_email_connection_error_is_transient(flask_app, today):
    user = make_user()
    endpoint = make_email_endpoint(user)
    sender = EmailSender("smtp.example.com", smtp_factory=lambda host, port: FakeSMTP(host, port, OSError("down")),
                         from_addr="bot@example.com")
    with pytest.raises(TransientDeliveryError):
        sender.send(endpoint, _user_tasks(user, today), CONTENT, today)


def test_email_subject_and_html(flask_app, today):
    user_tasks = _user_tasks(make_user(), today)

    assert "2 tasks" in build_reminder_subject(user_tasks)
    html = build_reminder_html(user_tasks, today, CONTENT.body)
    assert html.index("Pay &lt;Visa&gt; bill") < html.index("Call bank")
    assert "3 days overdue" in html
    assert "<Visa>" not in html


def test_lifecycle_deletes_only_on_permanent_failure(flask_app):
    user = make_user()
    gone = make_push_endpoint(user, "https://push.example.com/gone")
    flaky = make_push_endpoint(user, "https://push.example.com/flaky")
    manager = EndpointLifecycleManager()

    assert manager.handle_failure(gone, PermanentDeliveryError(gone, "gone", 410)) is True
    assert manager.handle_failure(flaky, TransientDeliveryError(flaky, "busy", 503)) is False
    assert manager.handle_failure(flaky, RuntimeError("unexpected")) is False

    remaining = [e.id for e in DeliveryEndpoint.query.all()]
    assert remaining == [flaky.id]


def test_lifecycle_survives_failed_delete(flask_app):
    user = make_user()
    endpoint = make_push_endpoint(user)

    class BrokenSession:
        def delete(self, obj):
            from sqlalchemy.exc import OperationalError
            raise OperationalError("DELETE", {}, Exception("locked"))

        def commit(self):
            pass

        def rollback(self):
            self.rolled_back = True

    session = BrokenSession()
    manager = EndpointLifecycleManager(session=session)
    assert manager.handle_failure(endpoint, PermanentDeliveryError(endpoint, "gone", 410)) is False
    assert session.rolled_back
    assert db.session.get(DeliveryEndpoint, endpoint.id) is not None
