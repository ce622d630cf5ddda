"""One server-side reminder run: select due tasks, group per user, render, deliver."""

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import pytz
from sqlalchemy.exc import SQLAlchemyError

from backend.due_tasks import select_due_tasks
from backend.endpoint_lifecycle import EndpointLifecycleManager
from backend.reminder_errors import (
    AuthorizationError,
    DeliveryError,
    ReminderError,
    SelectionError,
    TransientDeliveryError,
)
from backend.subscriber_grouping import group_by_user, resolve_endpoints
from content_service import StaticContentProvider
from reminder_occasions import Channel, Occasion, require_exhaustive


class DispatchState(str, Enum):
    IDLE = 'idle'
    AUTHORIZING = 'authorizing'
    SELECTING = 'selecting'
    GROUPING = 'grouping'
    GENERATING = 'generating'
    DELIVERING = 'delivering'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class DispatchResult:
    occasion: Occasion
    channels: List[Channel]
    state: DispatchState = DispatchState.IDLE
    transitions: List[str] = field(default_factory=list)
    tasks_found: int = 0
    users_notified: int = 0
    sent: int = 0
    total: int = 0
    per_channel: Dict[str, int] = field(default_factory=dict)
    per_user: Dict[int, Dict[str, int]] = field(default_factory=dict)
    endpoints_removed: int = 0
    error: Optional[ReminderError] = None

    @property
    def status_code(self):
        if self.state == DispatchState.DONE:
            return 200
        if isinstance(self.error, AuthorizationError):
            return 401
        return 500

    def to_dict(self):
        if self.state != DispatchState.DONE:
            return {'error': str(self.error) if self.error else 'Reminder dispatch failed'}
        if not self.tasks_found:
            message = 'No tasks due today or overdue'
        else:
            message = 'Reminders sent'
        return {
            'message': message,
            'occasion': self.occasion.value,
            'channels': [c.value for c in self.channels],
            'sent': self.sent,
            'total': self.total,
            'tasks_found': self.tasks_found,
            'users_notified': self.users_notified,
            'per_channel': dict(self.per_channel),
            'endpoints_removed': self.endpoints_removed,
        }


class ReminderDispatcher:
    def __init__(self, api_key, timezone_name, content_provider, push_sender, email_sender,
                 lifecycle=None, logger=None):
        self.api_key = api_key
        self.timezone_name = timezone_name
        self.content_provider = content_provider
        self.push_sender = push_sender
        self.email_sender = email_sender
        self.logger = logger or logging.getLogger(__name__)
        self.lifecycle = lifecycle or EndpointLifecycleManager(logger=self.logger)
        self._senders = require_exhaustive({
            Channel.PUSH: self._deliver_push,
            Channel.EMAIL: self._deliver_email,
        }, Channel, 'ReminderDispatcher senders')

    def _transition(self, result, state, detail=None):
        result.state = state
        result.transitions.append(f"{state.value}:{detail}" if detail else state.value)

    def _authorized(self, api_key):
        if not self.api_key or not api_key:
            return False
        return hmac.compare_digest(str(api_key).encode('utf-8'), str(self.api_key).encode('utf-8'))

    def _fail(self, result, error):
        result.error = error
        self._transition(result, DispatchState.FAILED)
        return result

    def run(self, api_key, occasion, channels=None, now=None) -> DispatchResult:
        channels = list(channels) if channels else list(Channel)
        result = DispatchResult(occasion=occasion, channels=channels)
        result.per_channel = {c.value: 0 for c in channels}
        result.transitions.append(DispatchState.IDLE.value)

        self._transition(result, DispatchState.AUTHORIZING)
        if not self._authorized(api_key):
            self.logger.warning("Unauthorized reminder dispatch for occasion %s", occasion.value)
            return self._fail(result, AuthorizationError('Unauthorized'))

        if now is None:
            now = datetime.now(pytz.UTC)

        self._transition(result, DispatchState.SELECTING)
        try:
            selection = select_due_tasks(now, self.timezone_name)
        except SelectionError as exc:
            self.logger.error("Reminder selection failed: %s", exc)
            return self._fail(result, exc)
        result.tasks_found = selection.total

        self._transition(result, DispatchState.GROUPING)
        grouped = group_by_user(selection)
        try:
            endpoints = resolve_endpoints(grouped.keys(), channels)
        except SQLAlchemyError as exc:
            self.logger.error("Endpoint lookup failed: %s", exc)
            return self._fail(result, SelectionError(f"Endpoint lookup failed: {exc}"))
        for user_id, user_tasks in grouped.items():
            result.per_user[user_id] = {
                'overdue': user_tasks.overdue_count,
                'due_today': user_tasks.due_today_count,
                'sent': 0,
            }

        self._transition(result, DispatchState.GENERATING)
        contents = {}
        for user_tasks in grouped.values():
            count = user_tasks.pending_count
            if count not in contents:
                contents[count] = self._generate(occasion, count)

        # Bucket before sending; a pruned endpoint is deleted mid-run.
        targets = {channel: [] for channel in channels}
        for user_id, user_tasks in grouped.items():
            for endpoint in endpoints.get(user_id, []):
                channel = Channel(endpoint.channel)
                if channel in targets:
                    targets[channel].append((user_tasks, endpoint))

        for channel in channels:
            self._transition(result, DispatchState.DELIVERING, channel.value)
            sender = self._senders[channel]
            for user_tasks, endpoint in targets[channel]:
                if sender(result, endpoint, user_tasks, contents[user_tasks.pending_count], selection.today):
                    result.per_user[user_tasks.user_id]['sent'] += 1

        result.users_notified = sum(1 for stats in result.per_user.values() if stats['sent'])
        self._transition(result, DispatchState.DONE)
        self.logger.info(
            "Reminder stats occasion=%s day=%s tasks=%s users=%s notified=%s sent=%s attempts=%s removed=%s",
            occasion.value,
            selection.today.isoformat(),
            result.tasks_found,
            len(grouped),
            result.users_notified,
            result.sent,
            result.total,
            result.endpoints_removed,
        )
        return result

    def _generate(self, occasion, count):
        try:
            return self.content_provider.generate(occasion, count)
        except Exception as exc:
            self.logger.warning("Content provider failed for %s, using static copy: %s", occasion.value, exc)
            return StaticContentProvider().generate(occasion, count)

    def _attempt(self, result, channel, endpoint, send):
        result.total += 1
        try:
            send()
        except DeliveryError as exc:
            if self.lifecycle.handle_failure(endpoint, exc):
                result.endpoints_removed += 1
            return False
        except Exception as exc:
            self.logger.exception("Unexpected %s delivery error for %s", channel.value, endpoint.describe())
            self.lifecycle.handle_failure(endpoint, TransientDeliveryError(endpoint, str(exc)))
            return False
        result.sent += 1
        result.per_channel[channel.value] = result.per_channel.get(channel.value, 0) + 1
        return True

    def _deliver_push(self, result, endpoint, user_tasks, content, today):
        if not self.push_sender.configured:
            self.logger.warning("VAPID keys missing; push not sent to %s", endpoint.describe())
            return False
        return self._attempt(result, Channel.PUSH, endpoint, lambda: self.push_sender.send(endpoint, content))

    def _deliver_email(self, result, endpoint, user_tasks, content, today):
        if not self.email_sender.configured:
            self.logger.warning("SMTP host/from missing; email not sent to %s", endpoint.describe())
            return False
        return self._attempt(
            result,
            Channel.EMAIL,
            endpoint,
            lambda: self.email_sender.send(endpoint, user_tasks, content, today),
        )
