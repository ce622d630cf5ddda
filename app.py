import os
from datetime import datetime

from dotenv import load_dotenv
from flask import Flask, request, jsonify, session

load_dotenv()

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.delivery import EmailSender, PushSender
from backend.in_app_notifier import InAppNotifier, count_pending_tasks
from backend.local_scheduler import Scheduler, SchedulerRegistry
from backend.reminder_dispatcher import ReminderDispatcher
from content_service import build_content_provider
from models import db, User
from reminder_occasions import REMINDER_CRON_SCHEDULES, occasion_for_hour

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///fintask.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['NOTIFICATION_API_KEY'] = os.environ.get('NOTIFICATION_API_KEY')  # Shared key for reminder triggers
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'America/Chicago')
app.config['APP_BASE_URL'] = os.environ.get('APP_BASE_URL', '/')
app.config['NOTIFICATION_ICON'] = os.environ.get('NOTIFICATION_ICON', '/icons/official-logo.png')
app.config['VAPID_PUBLIC_KEY'] = os.environ.get('VAPID_PUBLIC_KEY')
app.config['VAPID_PRIVATE_KEY'] = os.environ.get('VAPID_PRIVATE_KEY')
app.config['VAPID_SUBJECT'] = os.environ.get('VAPID_SUBJECT', 'admin@example.com')
app.config['SMTP_HOST'] = os.environ.get('SMTP_HOST')
app.config['SMTP_PORT'] = int(os.environ.get('SMTP_PORT', 587))
app.config['SMTP_USER'] = os.environ.get('SMTP_USER')
app.config['SMTP_PASSWORD'] = os.environ.get('SMTP_PASSWORD')
app.config['SMTP_FROM'] = os.environ.get('SMTP_FROM')
app.config['AI_CONTENT_TIMEOUT'] = float(os.environ.get('AI_CONTENT_TIMEOUT', 8))

db.init_app(app)
scheduler = None

with app.app_context():
    db.create_all()


def get_current_user():
    """Resolve the signed-in user from the session."""
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def build_dispatcher():
    return ReminderDispatcher(
        api_key=app.config.get('NOTIFICATION_API_KEY'),
        timezone_name=app.config.get('DEFAULT_TIMEZONE', 'UTC'),
        content_provider=build_content_provider(logger=app.logger, timeout=app.config.get('AI_CONTENT_TIMEOUT')),
        push_sender=PushSender(
            vapid_private_key=app.config.get('VAPID_PRIVATE_KEY'),
            vapid_subject=app.config.get('VAPID_SUBJECT'),
            icon=app.config.get('NOTIFICATION_ICON'),
            url=app.config.get('APP_BASE_URL', '/'),
        ),
        email_sender=EmailSender(
            host=app.config.get('SMTP_HOST'),
            port=app.config.get('SMTP_PORT'),
            user=app.config.get('SMTP_USER'),
            password=app.config.get('SMTP_PASSWORD'),
            from_addr=app.config.get('SMTP_FROM'),
            app_url=app.config.get('APP_BASE_URL', '/'),
        ),
        logger=app.logger,
    )


def default_occasion(now=None):
    tz = pytz.timezone(app.config.get('DEFAULT_TIMEZONE', 'UTC'))
    now = now or datetime.now(pytz.UTC)
    return occasion_for_hour(now.astimezone(tz).hour)


def _build_local_scheduler(user_id, timezone_name=None):
    return Scheduler(
        user_id,
        notifier=InAppNotifier(),
        content_provider=build_content_provider(logger=app.logger, timeout=app.config.get('AI_CONTENT_TIMEOUT')),
        pending_count=lambda: count_pending_tasks(user_id),
        timezone_name=timezone_name or app.config.get('DEFAULT_TIMEZONE', 'UTC'),
        context=app.app_context,
        icon=app.config.get('NOTIFICATION_ICON'),
        logger=app.logger,
    )


app.extensions['local_reminders'] = SchedulerRegistry(_build_local_scheduler)


def local_reminders():
    return app.extensions['local_reminders']


def _run_scheduled_reminders(occasion, channel):
    """Time-trigger entry point: one dispatcher run for a single occasion/channel."""
    with app.app_context():
        result = build_dispatcher().run(
            app.config.get('NOTIFICATION_API_KEY'),
            occasion,
            [channel],
        )
        if result.error:
            app.logger.error(
                "Scheduled %s %s reminders failed: %s",
                occasion.value,
                channel.value,
                result.error,
            )
        return result


_jobs_bootstrapped = False


def _start_scheduler():
    """Start background scheduler for the reminder time triggers."""
    global scheduler
    if os.environ.get('ENABLE_REMINDER_JOBS', '1') != '1':
        return
    if scheduler and scheduler.running:
        return
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return
    if not app.config.get('NOTIFICATION_API_KEY'):
        app.logger.warning("NOTIFICATION_API_KEY missing; reminder jobs not scheduled")
        return
    tz = app.config.get('DEFAULT_TIMEZONE', 'UTC')
    scheduler = BackgroundScheduler(timezone=tz)
    for occasion, channel, crontab in REMINDER_CRON_SCHEDULES:
        scheduler.add_job(
            _run_scheduled_reminders,
            CronTrigger.from_crontab(crontab, timezone=tz),
            args=[occasion, channel],
            id=f"reminders_{occasion.value}_{channel.value}",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
    scheduler.start()
    app.logger.info("Reminder scheduler started with %s jobs", len(REMINDER_CRON_SCHEDULES))


def _bootstrap_background_jobs():
    global _jobs_bootstrapped
    if _jobs_bootstrapped and scheduler and scheduler.running:
        return
    _start_scheduler()
    _jobs_bootstrapped = True


# Start scheduler on process startup (not request-dependent).
# Can be disabled for tooling/scripts that only need app context.
if os.environ.get('BOOTSTRAP_JOBS_ON_IMPORT', '1') == '1':
    try:
        _start_scheduler()
        _jobs_bootstrapped = bool(scheduler and scheduler.running)
    except Exception as e:
        app.logger.error(f"Error starting scheduler on startup: {e}")


from services import notification_routes, push_routes, reminder_routes, user_routes  # noqa: E402

app.add_url_rule('/api/reminders/dispatch', view_func=reminder_routes.api_dispatch_reminders, methods=['GET', 'POST'])

app.add_url_rule('/api/session/sign-in/<int:user_id>', view_func=user_routes.sign_in, methods=['POST'])
app.add_url_rule('/api/session/sign-out', view_func=user_routes.sign_out, methods=['POST'])
app.add_url_rule('/api/current-user', view_func=user_routes.current_user_info)

app.add_url_rule('/api/push/vapid-public-key', view_func=push_routes.api_vapid_public_key)
app.add_url_rule('/api/push/subscribe', view_func=push_routes.api_push_subscribe, methods=['POST'])
app.add_url_rule('/api/push/unsubscribe', view_func=push_routes.api_push_unsubscribe, methods=['POST'])
app.add_url_rule('/api/push/subscriptions', view_func=push_routes.api_push_list)
app.add_url_rule('/api/email/subscribe', view_func=push_routes.api_email_subscribe, methods=['POST'])
app.add_url_rule('/api/email/unsubscribe', view_func=push_routes.api_email_unsubscribe, methods=['POST'])

app.add_url_rule('/api/notifications', view_func=notification_routes.api_list_notifications)
app.add_url_rule('/api/notifications/<int:notification_id>/read', view_func=notification_routes.api_mark_notification_read, methods=['POST'])
app.add_url_rule('/api/notifications/permission', view_func=notification_routes.api_notification_permission, methods=['GET', 'PUT'])
app.add_url_rule('/api/notifications/schedule', view_func=notification_routes.api_local_schedule)


if __name__ == '__main__':
    app.run(debug=True, port=5000)
