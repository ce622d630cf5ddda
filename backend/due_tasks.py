"""Select incomplete tasks that are overdue or due today in the reference timezone."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Iterable, List, Optional

import pytz
from sqlalchemy.exc import SQLAlchemyError

from backend.reminder_errors import SelectionError
from models import Task


@dataclass
class DueTaskSelection:
    today: date
    day_start: datetime
    day_end: datetime
    overdue: List[Task] = field(default_factory=list)
    due_today: List[Task] = field(default_factory=list)

    @property
    def total(self):
        return len(self.overdue) + len(self.due_today)


def local_day_bounds(now: datetime, timezone_name: str):
    """Return (today, midnight, end-of-day) of `now` in `timezone_name`. Naive `now` is UTC."""
    tz = pytz.timezone(timezone_name)
    if now.tzinfo is None:
        now = pytz.UTC.localize(now)
    today = now.astimezone(tz).date()
    day_start = tz.localize(datetime.combine(today, time.min))
    day_end = tz.localize(datetime.combine(today, time.max))
    return today, day_start, day_end


def _sort_key(task):
    return (task.due_date, task.created_at or datetime.min, task.id or 0)


def partition_due_tasks(tasks: Iterable[Task], today: date):
    """Split tasks into (overdue, due_today), ordered by due date then creation.

    Completed tasks, tasks without a due date and tasks due after `today` are dropped.
    """
    overdue, due_today = [], []
    for task in sorted((t for t in tasks if t.due_date and not t.completed), key=_sort_key):
        if task.due_date < today:
            overdue.append(task)
        elif task.due_date == today:
            due_today.append(task)
    return overdue, due_today


def select_due_tasks(now: Optional[datetime] = None, timezone_name: str = 'UTC') -> DueTaskSelection:
    if now is None:
        now = datetime.now(pytz.UTC)
    today, day_start, day_end = local_day_bounds(now, timezone_name)
    try:
        tasks = Task.query.filter(
            Task.completed.is_(False),
            Task.due_date.isnot(None),
            Task.due_date <= day_end.date(),
        ).order_by(
            Task.due_date.asc(),
            Task.created_at.asc(),
            Task.id.asc(),
        ).all()
    except SQLAlchemyError as exc:
        raise SelectionError(f"Task query failed: {exc}") from exc

    overdue, due_today = partition_due_tasks(tasks, today)
    return DueTaskSelection(
        today=today,
        day_start=day_start,
        day_end=day_end,
        overdue=overdue,
        due_today=due_today,
    )
