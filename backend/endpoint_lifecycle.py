"""Prune delivery endpoints that can never succeed again."""

import logging

from sqlalchemy.exc import SQLAlchemyError

from backend.reminder_errors import DeliveryError
from models import db


class EndpointLifecycleManager:
    def __init__(self, session=None, logger=None):
        self.session = session or db.session
        self.logger = logger or logging.getLogger(__name__)

    def handle_failure(self, endpoint, error):
        """Delete `endpoint` when `error` is permanent. Returns True if it was deleted.

        Transient failures are only logged; the next scheduled run retries them.
        """
        permanent = isinstance(error, DeliveryError) and error.permanent
        if not permanent:
            self.logger.warning(
                "Delivery to %s failed (status=%s), keeping endpoint: %s",
                endpoint.describe(),
                getattr(error, 'status_code', None),
                error,
            )
            return False

        self.logger.warning(
            "Deleting invalid delivery endpoint %s due to %s",
            endpoint.describe(),
            error.status_code or error,
        )
        try:
            self.session.delete(endpoint)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            self.logger.error("Failed to delete endpoint %s: %s", endpoint.id, exc)
            return False
        return True
