"""Channel senders: Web Push (VAPID) and SMTP email."""

import json
import smtplib
from email.mime.text import MIMEText

from markupsafe import escape
from pywebpush import WebPushException, webpush

from backend.reminder_errors import PermanentDeliveryError, TransientDeliveryError
from content_service import pluralize_tasks

# Push services answer 404/410 once a subscription is expired or unsubscribed.
GONE_STATUSES = (404, 410)

PUSH_TTL_SECONDS = 12 * 60 * 60
PUSH_TIMEOUT_SECONDS = 10


class PushSender:
    def __init__(self, vapid_private_key, vapid_subject, icon='/icons/official-logo.png',
                 badge=None, url='/', send=None):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.icon = icon
        self.badge = badge or icon
        self.url = url
        self._send = send or webpush

    @property
    def configured(self):
        return bool(self.vapid_private_key)

    def build_payload(self, content, notification_type='scheduled-reminder'):
        return {
            'title': content.title,
            'body': content.body,
            'tag': content.tag,
            'icon': self.icon,
            'badge': self.badge,
            'data': {'url': self.url, 'type': notification_type},
        }

    def send(self, endpoint, content, notification_type='scheduled-reminder'):
        info = endpoint.subscription_info()
        if not info or not info.get('endpoint') or not (info.get('keys') or {}).get('auth'):
            raise PermanentDeliveryError(endpoint, "Malformed push subscription")
        subject = self.vapid_subject or 'admin@example.com'
        if not subject.startswith(('mailto:', 'https:')):
            subject = f"mailto:{subject}"
        try:
            self._send(
                subscription_info=info,
                data=json.dumps(self.build_payload(content, notification_type)),
                vapid_private_key=self.vapid_private_key,
                vapid_claims={'sub': subject},
                ttl=PUSH_TTL_SECONDS,
                timeout=PUSH_TIMEOUT_SECONDS,
            )
        except WebPushException as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status in GONE_STATUSES:
                raise PermanentDeliveryError(endpoint, f"Push subscription gone: {exc}", status) from exc
            raise TransientDeliveryError(endpoint, f"Push send failed: {exc}", status) from exc
        except Exception as exc:
            raise TransientDeliveryError(endpoint, f"Push send error: {exc}") from exc


def build_reminder_subject(user_tasks):
    return f"📌 Your FinTask To-Dos: {pluralize_tasks(user_tasks.pending_count)} due today & overdue"


def build_reminder_html(user_tasks, today, headline, app_url='/'):
    def _task_row(task, color, label):
        return f"""
        <div style="display:flex;background:#f7f8fb;border-radius:12px;margin-bottom:12px;">
          <div style="width:6px;background:{color};border-radius:12px 0 0 12px;"></div>
          <div style="padding:14px 16px;">
            <div style="font-size:13px;color:{color};margin-bottom:6px;">{label}</div>
            <div style="font-size:16px;font-weight:700;color:#121926;">{escape(task.description)}</div>
          </div>
        </div>
        """

    def _overdue_row(task):
        days = (today - task.due_date).days
        label = f"⚠️ Due {task.due_date.strftime('%b %d')} ({days} day{'' if days == 1 else 's'} overdue)"
        return _task_row(task, "#f04438", label)

    def _today_row(task):
        return _task_row(task, "#12b76a", "📅 Due today")

    overdue_html = ''.join([_overdue_row(t) for t in user_tasks.overdue]) or """
        <div style="padding:8px 0;color:#666;">Nothing overdue.</div>
    """
    today_html = ''.join([_today_row(t) for t in user_tasks.due_today]) or """
        <div style="padding:8px 0;color:#666;">Nothing due today.</div>
    """
    day_label = today.strftime('%A, %B %d, %Y')
    return f"""
<!doctype html>
<html>
  <body style="margin:0;padding:0;background:#ffffff;font-family:Arial, Helvetica, sans-serif;color:#121926;">
    <div style="max-width:640px;margin:0 auto;padding:20px;">
      <div style="font-size:26px;font-weight:800;margin-bottom:6px;">Your Daily Tasks</div>
      <div style="font-size:16px;color:#4c6fff;margin-bottom:6px;">{day_label}</div>
      <div style="font-size:15px;color:#6b7280;margin-bottom:18px;">{escape(headline)}</div>

      <div style="font-size:15px;font-weight:700;margin-bottom:10px;color:#121926;">Overdue ({user_tasks.overdue_count})</div>
      <div>
        {overdue_html}
      </div>

      <div style="font-size:15px;font-weight:700;margin:16px 0 10px;color:#121926;">Due today ({user_tasks.due_today_count})</div>
      <div>
        {today_html}
      </div>

      <div style="text-align:center;margin:24px 0;">
        <a href="{escape(app_url)}" style="background:#3182ce;color:#ffffff;padding:12px 24px;text-decoration:none;border-radius:8px;font-weight:600;font-size:14px;">Open FinTask</a>
      </div>
      <div style="text-align:left;color:#98a2b3;font-size:11px;margin-top:12px;">Automated reminder</div>
    </div>
  </body>
</html>
"""


class EmailSender:
    def __init__(self, host, port=587, user=None, password=None, from_addr=None,
                 app_url='/', smtp_factory=smtplib.SMTP):
        self.host = host
        self.port = int(port or 587)
        self.user = user
        self.password = password
        self.from_addr = from_addr or user
        self.app_url = app_url
        self._smtp_factory = smtp_factory

    @property
    def configured(self):
        return bool(self.host and self.from_addr)

    def send(self, endpoint, user_tasks, content, today):
        to_addr = (endpoint.payload or '').strip()
        if '@' not in to_addr:
            raise PermanentDeliveryError(endpoint, "Invalid email address")
        msg = MIMEText(build_reminder_html(user_tasks, today, content.body, self.app_url), 'html')
        msg['Subject'] = build_reminder_subject(user_tasks)
        msg['From'] = self.from_addr
        msg['To'] = to_addr

        try:
            with self._smtp_factory(self.host, self.port) as server:
                server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_addr, [to_addr], msg.as_string())
        except smtplib.SMTPRecipientsRefused as exc:
            # 4xx refusals (greylisting, mailbox busy) are temporary; only 5xx is final.
            code = (exc.recipients.get(to_addr) or (None,))[0]
            if isinstance(code, int) and 500 <= code < 600:
                raise PermanentDeliveryError(endpoint, f"Recipient refused: {exc}", code) from exc
            raise TransientDeliveryError(endpoint, f"Recipient deferred: {exc}", code) from exc
        except smtplib.SMTPResponseException as exc:
            raise TransientDeliveryError(endpoint, f"SMTP error: {exc}", exc.smtp_code) from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise TransientDeliveryError(endpoint, f"SMTP send failed: {exc}") from exc
