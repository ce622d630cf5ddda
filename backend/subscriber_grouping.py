"""Fan due tasks out per user and look up where each user can be reached."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from backend.due_tasks import DueTaskSelection
from models import DeliveryEndpoint, Task


@dataclass
class UserDueTasks:
    user_id: int
    overdue: List[Task] = field(default_factory=list)
    due_today: List[Task] = field(default_factory=list)

    @property
    def overdue_count(self):
        return len(self.overdue)

    @property
    def due_today_count(self):
        return len(self.due_today)

    @property
    def pending_count(self):
        return self.overdue_count + self.due_today_count

    @property
    def tasks(self):
        return self.overdue + self.due_today


def group_by_user(selection: DueTaskSelection) -> Dict[int, UserDueTasks]:
    """Users with nothing due are left out; there is no all-clear reminder."""
    grouped: Dict[int, UserDueTasks] = {}
    for task in selection.overdue:
        grouped.setdefault(task.user_id, UserDueTasks(task.user_id)).overdue.append(task)
    for task in selection.due_today:
        grouped.setdefault(task.user_id, UserDueTasks(task.user_id)).due_today.append(task)
    return grouped


def resolve_endpoints(user_ids: Iterable[int], channels: Optional[Iterable] = None) -> Dict[int, List[DeliveryEndpoint]]:
    user_ids = list(user_ids)
    resolved: Dict[int, List[DeliveryEndpoint]] = {uid: [] for uid in user_ids}
    if not user_ids:
        return resolved
    query = DeliveryEndpoint.query.filter(DeliveryEndpoint.user_id.in_(user_ids))
    if channels is not None:
        query = query.filter(DeliveryEndpoint.channel.in_([getattr(c, 'value', c) for c in channels]))
    for endpoint in query.order_by(DeliveryEndpoint.channel.asc(), DeliveryEndpoint.id.asc()).all():
        resolved[endpoint.user_id].append(endpoint)
    return resolved
