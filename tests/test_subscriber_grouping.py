from datetime import timedelta

from backend.due_tasks import select_due_tasks
from backend.subscriber_grouping import group_by_user, resolve_endpoints
from reminder_occasions import Channel
from conftest import make_email_endpoint, make_push_endpoint, make_task, make_user


def test_group_by_user_counts_and_order(flask_app, now, today):
    alice = make_user("alice")
    bob = make_user("bob")
    make_user("carol")
    a_today = make_task(alice, "today", today)
    a_late = make_task(alice, "late", today - timedelta(days=2))
    b_late = make_task(bob, "late", today - timedelta(days=1))

    grouped = group_by_user(select_due_tasks(now, "America/Chicago"))

    assert set(grouped) == {alice.id, bob.id}
    assert grouped[alice.id].overdue_count == 1
    assert grouped[alice.id].due_today_count == 1
    assert grouped[alice.id].pending_count == 2
    assert [t.id for t in grouped[alice.id].tasks] == [a_late.id, a_today.id]
    assert [t.id for t in grouped[bob.id].tasks] == [b_late.id]


def test_users_without_due_tasks_are_absent(flask_app, now, today):
    user = make_user()
    make_task(user, "someday", today + timedelta(days=30))
    make_task(user, "undated")

    assert group_by_user(select_due_tasks(now, "America/Chicago")) == {}


def test_resolve_endpoints(flask_app):
    alice = make_user("alice")
    bob = make_user("bob")
    push = make_push_endpoint(alice)
    email = make_email_endpoint(alice)

    resolved = resolve_endpoints([alice.id, bob.id])
    assert [e.id for e in resolved[alice.id]] == [email.id, push.id]
    assert resolved[bob.id] == []

    only_push = resolve_endpoints([alice.id], [Channel.PUSH])
    assert [e.id for e in only_push[alice.id]] == [push.id]


def test_resolve_endpoints_empty_input(flask_app):
    assert resolve_endpoints([]) == {}
