"""Reminder occasions, delivery channels and the fixed schedules that drive them."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple


class Occasion(str, Enum):
    MORNING = 'morning'
    NOON = 'noon'
    EVENING = 'evening'
    NIGHT = 'night'
    WEEKLY_REVIEW = 'weekly-review'

    @property
    def tag(self) -> str:
        return f"{self.value}-reminder"

    @classmethod
    def parse(cls, raw) -> 'Occasion':
        value = str(raw or '').strip().lower()
        for member in cls:
            if member.value == value or member.name.lower() == value:
                return member
        raise ValueError(f"Unknown occasion: {raw!r}")


class Channel(str, Enum):
    PUSH = 'push'
    EMAIL = 'email'

    @classmethod
    def parse_many(cls, raw) -> List['Channel']:
        """Parse 'push,email' (or a list of such strings) into channels, keeping order."""
        if raw is None:
            return list(cls)
        values = raw if isinstance(raw, (list, tuple)) else [raw]
        channels = []
        for value in values:
            for part in str(value).split(','):
                part = part.strip().lower()
                if not part:
                    continue
                try:
                    channel = cls(part)
                except ValueError:
                    raise ValueError(f"Unknown channel: {part!r}") from None
                if channel not in channels:
                    channels.append(channel)
        return channels or list(cls)


@dataclass(frozen=True)
class NotificationContent:
    title: str
    body: str
    tag: str

    def to_dict(self) -> Dict[str, str]:
        return {'title': self.title, 'body': self.body, 'tag': self.tag}


@dataclass(frozen=True)
class ScheduledOccasion:
    occasion: Occasion
    hour: int
    minute: int = 0
    weekday: Optional[int] = None  # Monday=0 .. Sunday=6; None means daily

    @property
    def is_weekly(self) -> bool:
        return self.weekday is not None


def require_exhaustive(table: Dict, members: Iterable[Enum], name: str) -> Dict:
    """Fail at import time if a lookup table misses an enum member."""
    missing = [m for m in members if m not in table]
    if missing:
        raise RuntimeError(f"{name} is missing entries for: {', '.join(m.value for m in missing)}")
    return table


# Local (per-session) reminder slots, in the session's timezone.
LOCAL_SCHEDULE: Tuple[ScheduledOccasion, ...] = (
    ScheduledOccasion(Occasion.MORNING, 8, 0),
    ScheduledOccasion(Occasion.NOON, 12, 0),
    ScheduledOccasion(Occasion.EVENING, 18, 0),
    ScheduledOccasion(Occasion.NIGHT, 21, 0),
    ScheduledOccasion(Occasion.WEEKLY_REVIEW, 10, 0, weekday=6),
)

# Server-side time triggers: (occasion, channel, crontab) in the reference timezone.
REMINDER_CRON_SCHEDULES: Tuple[Tuple[Occasion, Channel, str], ...] = (
    (Occasion.MORNING, Channel.PUSH, '0 8 * * *'),
    (Occasion.MORNING, Channel.EMAIL, '0 9 * * *'),
    (Occasion.NOON, Channel.PUSH, '0 12 * * *'),
    (Occasion.EVENING, Channel.PUSH, '0 18 * * *'),
    (Occasion.NIGHT, Channel.PUSH, '0 21 * * *'),
)

require_exhaustive(
    {slot.occasion: slot for slot in LOCAL_SCHEDULE},
    Occasion,
    'LOCAL_SCHEDULE',
)

DAILY_OCCASIONS = tuple(slot for slot in LOCAL_SCHEDULE if not slot.is_weekly)


def occasion_for_hour(hour: int) -> Occasion:
    """Latest daily occasion whose slot starts at or before `hour` (wrapping to night)."""
    chosen = None
    for slot in sorted(DAILY_OCCASIONS, key=lambda s: (s.hour, s.minute)):
        if slot.hour <= hour:
            chosen = slot.occasion
    return chosen or Occasion.NIGHT
