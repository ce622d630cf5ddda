import os

from openai import OpenAI


DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 8.0


def ai_configured():
    return bool(os.environ.get("OPENAI_API_KEY"))


def get_openai_client(timeout=None) -> OpenAI:
    api_key = os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set")
    if timeout is None:
        timeout = float(os.environ.get("AI_CONTENT_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
    # No SDK retries: a slow provider must not hold a reminder run past one timeout.
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=0)


def call_chat_text(
    system_prompt,
    user_content,
    *,
    max_tokens=60,
    temperature=0.8,
    timeout=None,
    logger=None,
):
    """Call OpenAI chat completion and return stripped response content or None."""
    try:
        client = get_openai_client(timeout=timeout)
        response = client.chat.completions.create(
            model=os.environ.get("OPENAI_MODEL", DEFAULT_MODEL),
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        content = response.choices[0].message.content
    except Exception as exc:
        if logger:
            logger.warning("OpenAI API error: %s", exc)
        return None
    if not content:
        return None
    # Models like to wrap one-liners in quotes.
    return content.strip().strip('"').strip()
