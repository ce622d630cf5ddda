"""Local notifications for signed-in sessions, stored as in-app Notification rows."""

import json

from models import (
    PERMISSION_DEFAULT,
    Notification,
    NotificationSetting,
    Task,
    db,
)


def get_or_create_notification_settings(user_id):
    prefs = NotificationSetting.query.filter_by(user_id=user_id).first()
    if not prefs:
        prefs = NotificationSetting(user_id=user_id)
        db.session.add(prefs)
        db.session.commit()
    return prefs


def count_pending_tasks(user_id):
    return Task.query.filter(Task.user_id == user_id, Task.completed.is_(False)).count()


class InAppNotifier:
    def permission(self, user_id):
        prefs = NotificationSetting.query.filter_by(user_id=user_id).first()
        return (prefs.permission if prefs else None) or PERMISSION_DEFAULT

    def show(self, user_id, title, options):
        tag = options.get('tag')
        if tag:
            # A newer notification with the same tag replaces an undismissed one.
            Notification.query.filter_by(user_id=user_id, tag=tag, read_at=None).delete()
        notif = Notification(
            user_id=user_id,
            tag=tag,
            title=title,
            body=options.get('body'),
            icon=options.get('icon'),
            badge=options.get('badge'),
            require_interaction=bool(options.get('requireInteraction')),
            actions_json=json.dumps(options.get('actions') or []),
            data_json=json.dumps(options.get('data') or {}),
        )
        db.session.add(notif)
        db.session.commit()
        return notif
