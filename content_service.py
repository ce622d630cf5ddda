import logging
from typing import Callable, Dict, Optional

from backend.reminder_errors import ContentGenerationError
from reminder_occasions import NotificationContent, Occasion, require_exhaustive
from services.ai_gateway import ai_configured, call_chat_text


MAX_BODY_LENGTH = 100

STATIC_TITLES: Dict[Occasion, str] = require_exhaustive({
    Occasion.MORNING: "🌅 Good Morning!",
    Occasion.NOON: "💪 Midday Boost",
    Occasion.EVENING: "🌆 Evening Check",
    Occasion.NIGHT: "🌙 Day Summary",
    Occasion.WEEKLY_REVIEW: "💳 Weekly Card Review",
}, Occasion, "STATIC_TITLES")

# {tasks} is replaced with "1 task" / "N tasks".
STATIC_BODIES: Dict[Occasion, str] = require_exhaustive({
    Occasion.MORNING: "You have {tasks} pending. Let's tackle them!",
    Occasion.NOON: "Time to power through! {tasks} on your list, aim for 4 today 💪",
    Occasion.EVENING: "{tasks} still open. Time to wrap up before the day ends!",
    Occasion.NIGHT: "{tasks} left for tomorrow. Rest well and recharge 🌙",
    Occasion.WEEKLY_REVIEW: "Check your card activity and payments. {tasks} pending.",
}, Occasion, "STATIC_BODIES")

AI_PROMPTS: Dict[Occasion, str] = require_exhaustive({
    Occasion.MORNING: "Write a motivational morning notification. The user has {count} pending tasks. Be encouraging.",
    Occasion.NOON: "Write a midday motivation notification encouraging the user to finish at least 4 tasks today. They have {count} pending. Be energetic.",
    Occasion.EVENING: "Write an evening check-in notification. The user has {count} tasks remaining. Be supportive.",
    Occasion.NIGHT: "Write a good night message. The user has {count} tasks pending for tomorrow. Be appreciative and hopeful.",
    Occasion.WEEKLY_REVIEW: "Write a weekly reminder to review credit card activity and payments. The user has {count} pending tasks.",
}, Occasion, "AI_PROMPTS")

AI_SYSTEM_PROMPT = (
    "You write push notification text for FinTask, a personal finance and task app. "
    "Reply with the message text only: one line, under {limit} characters, at most one emoji, "
    "no quotes or formatting."
)


def pluralize_tasks(count):
    return f"{count} task" if count == 1 else f"{count} tasks"


def _normalize_count(pending_count):
    try:
        return max(0, int(pending_count or 0))
    except (TypeError, ValueError):
        return 0


class ContentProvider:
    """Produces the title/body/tag shown for a reminder occasion."""

    def generate(self, occasion: Occasion, pending_count: int) -> NotificationContent:
        raise NotImplementedError


class StaticContentProvider(ContentProvider):
    """Deterministic templates. No I/O, never raises for a known occasion."""

    def generate(self, occasion, pending_count):
        count = _normalize_count(pending_count)
        body = STATIC_BODIES[occasion].format(tasks=pluralize_tasks(count))
        return NotificationContent(title=STATIC_TITLES[occasion], body=body, tag=occasion.tag)


class AIContentProvider(ContentProvider):
    """Asks the chat model for the body; raises ContentGenerationError on any problem."""

    def __init__(self, call: Callable = call_chat_text, max_length: int = MAX_BODY_LENGTH,
                 timeout: Optional[float] = None, logger=None):
        self.call = call
        self.max_length = max_length
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def generate(self, occasion, pending_count):
        count = _normalize_count(pending_count)
        system_prompt = AI_SYSTEM_PROMPT.format(limit=self.max_length)
        try:
            body = self.call(
                system_prompt,
                AI_PROMPTS[occasion].format(count=count),
                timeout=self.timeout,
                logger=self.logger,
            )
        except Exception as exc:
            raise ContentGenerationError(f"AI call failed: {exc}") from exc
        body = (body or '').strip()
        if not body:
            raise ContentGenerationError("AI returned no content")
        if len(body) > self.max_length:
            raise ContentGenerationError(f"AI content too long ({len(body)} > {self.max_length})")
        return NotificationContent(title=STATIC_TITLES[occasion], body=body, tag=occasion.tag)


class FallbackContentProvider(ContentProvider):
    """Tries `primary`, and answers from `fallback` on any exception or policy violation."""

    def __init__(self, primary: ContentProvider, fallback: ContentProvider,
                 max_length: int = MAX_BODY_LENGTH, logger=None):
        self.primary = primary
        self.fallback = fallback
        self.max_length = max_length
        self.logger = logger or logging.getLogger(__name__)

    def generate(self, occasion, pending_count):
        try:
            content = self.primary.generate(occasion, pending_count)
        except Exception as exc:
            self.logger.info("Reminder content fallback for %s: %s", occasion.value, exc)
            return self.fallback.generate(occasion, pending_count)
        if not content or not content.body or len(content.body) > self.max_length:
            self.logger.info("Reminder content fallback for %s: content rejected", occasion.value)
            return self.fallback.generate(occasion, pending_count)
        return content


def build_content_provider(logger=None, timeout=None) -> ContentProvider:
    """AI with static fallback when an OpenAI key is configured, static templates otherwise."""
    static = StaticContentProvider()
    if not ai_configured():
        return static
    return FallbackContentProvider(
        AIContentProvider(timeout=timeout, logger=logger),
        static,
        logger=logger,
    )
