import json
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

CHANNEL_PUSH = 'push'
CHANNEL_EMAIL = 'email'

PERMISSION_DEFAULT = 'default'
PERMISSION_GRANTED = 'granted'
PERMISSION_DENIED = 'denied'
PERMISSION_STATES = {PERMISSION_DEFAULT, PERMISSION_GRANTED, PERMISSION_DENIED}


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    tasks = db.relationship('Task', backref='owner', lazy=True, cascade="all, delete-orphan")
    endpoints = db.relationship('DeliveryEndpoint', backref='user', lazy=True, cascade="all, delete-orphan")
    notifications = db.relationship('Notification', backref='user', lazy=True, cascade="all, delete-orphan")
    notification_settings = db.relationship('NotificationSetting', backref='user', lazy=True, cascade="all, delete-orphan")


class Task(db.Model):
    """A todo owned by a user. Written by the CRUD layer, read-only here."""
    __tablename__ = 'todos'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=False)
    due_date = db.Column(db.Date, nullable=True)  # calendar date, no time / tz
    completed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'description': self.description,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'completed': self.completed,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class DeliveryEndpoint(db.Model):
    """Per-user delivery target: a Web Push subscription (VAPID) or an email address."""
    __tablename__ = 'delivery_endpoints'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    channel = db.Column(db.String(20), nullable=False)  # push | email
    payload = db.Column(db.Text, nullable=False)  # subscription JSON or email address
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def subscription_info(self):
        """Decoded push subscription ({endpoint, keys:{p256dh, auth}})."""
        if self.channel != CHANNEL_PUSH:
            return None
        try:
            return json.loads(self.payload)
        except (TypeError, ValueError):
            return None

    def describe(self):
        """Short label for log lines; never logs push keys."""
        if self.channel == CHANNEL_PUSH:
            info = self.subscription_info() or {}
            return f"push:{self.id}:{(info.get('endpoint') or '')[:60]}"
        return f"email:{self.id}:{self.payload}"

    def to_dict(self):
        info = self.subscription_info()
        return {
            'id': self.id,
            'user_id': self.user_id,
            'channel': self.channel,
            'endpoint': info.get('endpoint') if info else None,
            'email': self.payload if self.channel == CHANNEL_EMAIL else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Notification(db.Model):
    """A local notification displayed to a signed-in session."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    tag = db.Column(db.String(50), nullable=True)  # same tag replaces an unread one
    title = db.Column(db.String(200), nullable=False)
    body = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(300), nullable=True)
    badge = db.Column(db.String(300), nullable=True)
    require_interaction = db.Column(db.Boolean, default=False)
    actions_json = db.Column(db.Text, nullable=True)
    data_json = db.Column(db.Text, nullable=True)
    read_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'tag': self.tag,
            'title': self.title,
            'body': self.body,
            'icon': self.icon,
            'badge': self.badge,
            'requireInteraction': bool(self.require_interaction),
            'actions': json.loads(self.actions_json) if self.actions_json else [],
            'data': json.loads(self.data_json) if self.data_json else {},
            'read_at': self.read_at.isoformat() if self.read_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class NotificationSetting(db.Model):
    """Per-user notification permission, mirroring the browser permission model."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)
    permission = db.Column(db.String(20), default=PERMISSION_DEFAULT)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'permission': self.permission or PERMISSION_DEFAULT,
        }
