"""Per-session recurring local reminders.

Each signed-in session owns one `Scheduler`. It arms a single-shot timer per
occasion, shows a tagged local notification when the timer fires and re-arms
itself for the next occurrence. Sign-out tears it down.
"""

import logging
import threading
from contextlib import nullcontext
from datetime import datetime, time, timedelta
from typing import Callable, Dict, Optional

import pytz

from background_jobs import start_daemon_timer
from models import PERMISSION_GRANTED
from reminder_occasions import LOCAL_SCHEDULE, Occasion, ScheduledOccasion


NOTIFICATION_ACTIONS = [
    {'action': 'open', 'title': '📱 Open FinTask'},
    {'action': 'dismiss', 'title': '✖️ Dismiss'},
]


def localize(now: datetime, timezone_name: str = 'UTC') -> datetime:
    """Express `now` in `timezone_name`. Naive values are read as local wall-clock time."""
    tz = pytz.timezone(timezone_name)
    return tz.localize(now) if now.tzinfo is None else now.astimezone(tz)


def next_fire_time(slot: ScheduledOccasion, now: datetime, timezone_name: str = 'UTC') -> datetime:
    """First slot occurrence strictly after `now`. Naive `now` is read as local time."""
    tz = pytz.timezone(timezone_name)
    local_now = localize(now, timezone_name)
    day = local_now.date()
    if slot.is_weekly:
        day += timedelta(days=(slot.weekday - day.weekday()) % 7)
    fire_at = tz.localize(datetime.combine(day, time(slot.hour, slot.minute)))
    if fire_at <= local_now:
        day += timedelta(days=7 if slot.is_weekly else 1)
        fire_at = tz.localize(datetime.combine(day, time(slot.hour, slot.minute)))
    return fire_at


class Scheduler:
    def __init__(
        self,
        user_id,
        notifier,
        content_provider,
        pending_count: Optional[Callable[[], int]] = None,
        schedule=LOCAL_SCHEDULE,
        timezone_name='UTC',
        clock: Optional[Callable[[], datetime]] = None,
        timer_factory=start_daemon_timer,
        context=None,
        icon='/icons/official-logo.png',
        logger=None,
    ):
        self.user_id = user_id
        self.notifier = notifier
        self.content_provider = content_provider
        self.pending_count = pending_count or (lambda: 0)
        self.schedule = tuple(schedule)
        self.timezone_name = timezone_name
        self.clock = clock or (lambda: datetime.now(pytz.UTC))
        self.timer_factory = timer_factory
        self.context = context or nullcontext
        self.icon = icon
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._timers: Dict[Occasion, tuple] = {}
        self._active = False

    @property
    def active(self):
        return self._active

    def armed(self) -> Dict[Occasion, datetime]:
        with self._lock:
            return {occasion: fire_at for occasion, (_, fire_at) in self._timers.items()}

    def start(self) -> bool:
        """Arm every slot if notification permission is granted. Returns whether it armed."""
        with self._lock:
            if self._active:
                return True
            permission = self.notifier.permission(self.user_id)
            if permission != PERMISSION_GRANTED:
                self.logger.info(
                    "Notifications not granted for user %s (%s), local reminders not armed",
                    self.user_id,
                    permission,
                )
                return False
            self._active = True
            for slot in self.schedule:
                self._arm(slot)
        return True

    def _arm(self, slot):
        with self._lock:
            if not self._active:
                return None
            self._cancel_timer(slot.occasion)
            now = localize(self.clock(), self.timezone_name)
            fire_at = next_fire_time(slot, now, self.timezone_name)
            delay = max(0.0, (fire_at - now).total_seconds())
            handle = self.timer_factory(delay, self._on_timer, args=(slot,))
            self._timers[slot.occasion] = (handle, fire_at)
            return fire_at

    def _on_timer(self, slot):
        with self._lock:
            if not self._active:
                return
            self._timers.pop(slot.occasion, None)
        try:
            with self.context():
                self.fire(slot, require_active=True)
        except Exception:
            self.logger.exception("Failed to show scheduled notification %s", slot.occasion.value)
        self._arm(slot)

    def fire(self, slot, require_active=False):
        """Render and show the notification for `slot`. Does not re-arm.

        With `require_active`, nothing is shown if the scheduler was torn down
        while the content was being rendered; returns None in that case.
        """
        content = self.content_provider.generate(slot.occasion, self.pending_count())
        with self._lock:
            if require_active and not self._active:
                return None
            self.notifier.show(self.user_id, content.title, {
                'body': content.body,
                'icon': self.icon,
                'badge': self.icon,
                'tag': slot.occasion.tag,
                'requireInteraction': False,
                'actions': NOTIFICATION_ACTIONS,
                'data': {'type': slot.occasion.value, 'url': '/'},
            })
        return content

    def _cancel_timer(self, occasion):
        entry = self._timers.pop(occasion, None)
        if entry:
            entry[0].cancel()

    def cancel(self, occasion: Occasion):
        with self._lock:
            self._cancel_timer(occasion)

    def teardown(self):
        """Cancel every armed timer. Safe to call repeatedly."""
        with self._lock:
            self._active = False
            for occasion in list(self._timers):
                self._cancel_timer(occasion)
            self._timers.clear()


class SchedulerRegistry:
    """Owns the live per-user schedulers for this process."""

    def __init__(self, factory):
        self.factory = factory
        self._lock = threading.Lock()
        self._schedulers: Dict[int, Scheduler] = {}
        self._user_locks: Dict[int, threading.RLock] = {}

    def _user_lock(self, user_id):
        with self._lock:
            return self._user_locks.setdefault(user_id, threading.RLock())

    def get(self, user_id) -> Optional[Scheduler]:
        with self._lock:
            return self._schedulers.get(user_id)

    def sign_in(self, user_id, **options) -> Scheduler:
        # Replace, build and start as one step per user so concurrent sign-ins
        # never leave an unreachable scheduler running.
        with self._user_lock(user_id):
            self.sign_out(user_id)
            scheduler = self.factory(user_id, **options)
            scheduler.start()
            with self._lock:
                self._schedulers[user_id] = scheduler
            return scheduler

    def sign_out(self, user_id) -> bool:
        with self._user_lock(user_id):
            with self._lock:
                scheduler = self._schedulers.pop(user_id, None)
            if not scheduler:
                return False
            scheduler.teardown()
            return True

    def shutdown(self):
        with self._lock:
            schedulers = list(self._schedulers.values())
            self._schedulers.clear()
        for scheduler in schedulers:
            scheduler.teardown()
