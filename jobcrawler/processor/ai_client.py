"""
AI fallback client for field extraction.

Wraps the text-completion HTTP APIs of Gemini, Claude and OpenAI behind one
call, ``AIClient.complete(prompt_template, text)``. The client is used only
when a field's manual rules fail and the source configuration enables the
fallback, so it is strictly best-effort: every failure (disabled, no API key,
daily budget exhausted, timeout, HTTP error, unexpected payload) is logged and
collapses to ``None``.

Environment Variables:
    AI_ENABLED: "true" to allow AI calls (default: disabled)
    AI_PROVIDER: gemini | claude | openai (default: gemini)
    GEMINI_API_KEY / CLAUDE_API_KEY / OPENAI_API_KEY: provider credentials
    AI_DAILY_LIMIT: override for the daily call budget
    AI_TIMEOUT_SECONDS: per-request timeout (default: 30)
"""

import json
import logging
import os
import re
import threading
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

# Constants
API_TIMEOUT_SECONDS = 30
DEFAULT_PROVIDER = 'gemini'
TEMPERATURE = 0.3
MAX_OUTPUT_TOKENS = 1000

GEMINI_URL = 'https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent'
GEMINI_MODEL = 'gemini-1.5-flash'
CLAUDE_URL = 'https://api.anthropic.com/v1/messages'
CLAUDE_MODEL = 'claude-3-haiku-20240307'
CLAUDE_API_VERSION = '2023-06-01'
OPENAI_URL = 'https://api.openai.com/v1/chat/completions'
OPENAI_MODEL = 'gpt-3.5-turbo'

API_KEY_ENV_VARS = {
    'gemini': 'GEMINI_API_KEY',
    'claude': 'CLAUDE_API_KEY',
    'openai': 'OPENAI_API_KEY',
}

CODE_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL)


class AIBudget:
    """
    Daily AI call budget.

    The counter is checked before it is incremented and both happen under a
    lock, so concurrent callers can never exceed the limit. ``reset()`` is an
    explicit operation invoked by the scheduler on the daily boundary.
    """

    def __init__(self, daily_limit: int):
        if daily_limit < 0:
            raise ValueError("daily_limit must be >= 0")
        self.daily_limit = daily_limit
        self._count = 0
        self._lock = threading.Lock()

    @property
    def used(self) -> int:
        return self._count

    @property
    def remaining(self) -> int:
        return max(self.daily_limit - self._count, 0)

    def try_acquire(self) -> bool:
        """Reserve one call. Returns False when the daily limit is reached."""
        with self._lock:
            if self._count >= self.daily_limit:
                return False
            self._count += 1
            return True

    def reset(self) -> None:
        with self._lock:
            previous = self._count
            self._count = 0
        logger.info("AI daily call count reset", extra={'previous_count': previous})


def parse_ai_response(text: Optional[str]) -> Any:
    """
    Interpret a model reply.

    JSON (optionally wrapped in a ``` code fence) is decoded; anything else is
    returned as stripped text. Empty replies yield None.
    """
    if text is None:
        return None

    stripped = text.strip()
    if not stripped:
        return None

    fenced = CODE_FENCE_PATTERN.match(stripped)
    candidate = fenced.group(1) if fenced else stripped

    try:
        return json.loads(candidate)
    except ValueError:
        return stripped


class AIClient:
    """
    Provider-agnostic completion client with a daily call budget.

    Args:
        budget: Shared AIBudget owned by the orchestrator
        provider: gemini | claude | openai (defaults to AI_PROVIDER env var)
        api_key: Provider key (defaults to the provider's env var)
        enabled: Master switch (defaults to AI_ENABLED == "true")
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        budget: AIBudget,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        self.budget = budget
        self.provider = (provider or os.getenv('AI_PROVIDER', DEFAULT_PROVIDER)).lower()
        env_var = API_KEY_ENV_VARS.get(self.provider)
        self.api_key = api_key or (os.getenv(env_var) if env_var else None)

        if enabled is None:
            enabled = os.getenv('AI_ENABLED', 'false').lower() == 'true'
        self.enabled = enabled
        self.timeout = timeout or float(os.getenv('AI_TIMEOUT_SECONDS', API_TIMEOUT_SECONDS))

        if self.provider not in API_KEY_ENV_VARS:
            logger.warning("Unknown AI provider '%s'; AI fallback disabled", self.provider)
            self.enabled = False

    @property
    def available(self) -> bool:
        return self.enabled and bool(self.api_key)

    def complete(self, prompt_template: str, text: str) -> Any:
        """
        Run one completion.

        Args:
            prompt_template: Prompt with a ``{text}`` placeholder
            text: Value substituted for the placeholder

        Returns:
            Parsed JSON (dict/list), plain text, or None on any failure
        """
        if not self.available:
            logger.debug("AI processing disabled or no API key")
            return None

        if not self.budget.try_acquire():
            logger.warning(
                "AI daily limit reached",
                extra={'daily_limit': self.budget.daily_limit},
            )
            return None

        prompt = prompt_template.replace('{text}', text or '')

        try:
            if self.provider == 'gemini':
                reply = self._complete_gemini(prompt)
            elif self.provider == 'claude':
                reply = self._complete_claude(prompt)
            else:
                reply = self._complete_openai(prompt)
        except requests.exceptions.RequestException as exc:
            logger.error(
                "AI request failed",
                extra={'provider': self.provider, 'error': str(exc)},
            )
            return None
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error(
                "Unexpected AI response structure",
                extra={'provider': self.provider, 'error': str(exc), 'error_type': type(exc).__name__},
            )
            return None

        return parse_ai_response(reply)

    def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str],
              params: Optional[dict[str, str]] = None) -> dict[str, Any]:
        response = requests.post(url, json=payload, headers=headers, params=params, timeout=self.timeout)

        if response.status_code == 401:
            raise requests.exceptions.HTTPError(f"Invalid API key for provider '{self.provider}'")
        if response.status_code == 429:
            raise requests.exceptions.HTTPError(f"Rate limit exceeded for provider '{self.provider}'")
        if response.status_code >= 400:
            raise requests.exceptions.HTTPError(
                f"AI API error {response.status_code}: {response.text[:200]}"
            )

        return response.json()

    def _complete_gemini(self, prompt: str) -> Optional[str]:
        data = self._post(
            GEMINI_URL.format(model=GEMINI_MODEL),
            payload={
                'contents': [{'parts': [{'text': prompt}]}],
                'generationConfig': {'temperature': TEMPERATURE, 'maxOutputTokens': MAX_OUTPUT_TOKENS},
            },
            headers={'Content-Type': 'application/json'},
            params={'key': self.api_key},
        )
        return data['candidates'][0]['content']['parts'][0]['text']

    def _complete_claude(self, prompt: str) -> Optional[str]:
        data = self._post(
            CLAUDE_URL,
            payload={
                'model': CLAUDE_MODEL,
                'max_tokens': MAX_OUTPUT_TOKENS,
                'temperature': TEMPERATURE,
                'messages': [{'role': 'user', 'content': prompt}],
            },
            headers={
                'x-api-key': self.api_key,
                'anthropic-version': CLAUDE_API_VERSION,
                'content-type': 'application/json',
            },
        )
        return data['content'][0]['text']

    def _complete_openai(self, prompt: str) -> Optional[str]:
        data = self._post(
            OPENAI_URL,
            payload={
                'model': OPENAI_MODEL,
                'messages': [{'role': 'user', 'content': prompt}],
                'temperature': TEMPERATURE,
                'max_tokens': MAX_OUTPUT_TOKENS,
            },
            headers={
                'Authorization': f"Bearer {self.api_key}",
                'Content-Type': 'application/json',
            },
        )
        return data['choices'][0]['message']['content']
