"""
Short summaries of a session's first prompt.

Prompts at or under SUMMARY_THRESHOLD characters are used as-is. Longer
ones are sent to a cheap model, either through the agent CLI itself
(`claude --model haiku -p ...`, the default) or an OpenAI-compatible
chat completions endpoint.

Configuration via ~/.agentdeck/config.yaml (preferred) or environment
variables (fallback):

    summarizer:
      backend: cli            # cli | api
      model: haiku
      timeout: 15
      api_url: https://api.openai.com/v1/chat/completions
      api_model: gpt-4o-mini
      api_key_var: OPENAI_API_KEY

Any failure or timeout falls back to truncating the prompt, so
summarize() always returns a string.
"""

import json
import logging
import re
import subprocess
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from .config import get_summarizer_config
from .settings import LIMITS, TIMING
from .status_patterns import clean_prompt, strip_ansi

logger = logging.getLogger(__name__)

SUMMARY_THRESHOLD = LIMITS.summary_threshold
MAX_PROMPT_CHARS = 2000

SUMMARIZE_PROMPT = 'Summarize this task in under 10 words: "{prompt}"'

_LEVEL_PREFIX = re.compile(r"^\[[A-Z]+\]\s*", re.IGNORECASE)


def truncate(text: str, limit: int = SUMMARY_THRESHOLD) -> str:
    """Cut text to at most `limit` characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def clean_model_output(text: str) -> str:
    """Strip escapes, control characters, log-level prefixes and quotes."""
    text = clean_prompt(strip_ansi(text))
    text = _LEVEL_PREFIX.sub("", text).strip()
    return text.strip("\"'").strip()


class Summarizer:
    """Summarizes long first prompts, never raising to the caller."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, command: str = "claude"):
        config = config or get_summarizer_config()
        self.backend = config.get("backend", "cli")
        self.model = config.get("model", "haiku")
        self.timeout = float(config.get("timeout", TIMING.summarizer_timeout))
        self.api_url = config.get("api_url")
        self.api_model = config.get("api_model")
        self.api_key = config.get("api_key")
        self.command = command

    def summarize(self, prompt: str) -> str:
        cleaned = clean_prompt(prompt)
        if len(cleaned) <= SUMMARY_THRESHOLD:
            return cleaned

        if self.backend == "api":
            summary = self._ask_api(cleaned)
        else:
            summary = self._ask_cli(cleaned)

        if not summary:
            logger.warning("Summarizer unavailable, truncating prompt")
            return truncate(cleaned)
        return truncate(summary)

    def _ask_cli(self, prompt: str) -> Optional[str]:
        request = SUMMARIZE_PROMPT.format(prompt=prompt[:MAX_PROMPT_CHARS].replace('"', '\\"'))
        cmd = [self.command, "--model", self.model, "--tools", "", "-p", request]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Summarizer CLI timeout")
            return None
        except OSError as e:
            logger.warning(f"Summarizer CLI error: {e}")
            return None

        if result.returncode != 0:
            logger.warning(f"Summarizer CLI exited with {result.returncode}")
            return None
        return clean_model_output(result.stdout) or None

    def _ask_api(self, prompt: str) -> Optional[str]:
        if not self.api_key or not self.api_url:
            return None

        payload = json.dumps({
            "model": self.api_model,
            "max_tokens": 60,
            "temperature": 0.3,
            "messages": [{
                "role": "user",
                "content": SUMMARIZE_PROMPT.format(prompt=prompt[:MAX_PROMPT_CHARS]),
            }],
        }).encode("utf-8")

        req = urllib.request.Request(
            self.api_url,
            data=payload,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                if response.status != 200:
                    logger.warning(f"Summarizer API error: {response.status}")
                    return None
                result = json.loads(response.read().decode("utf-8"))
                content = result["choices"][0]["message"]["content"]
        except urllib.error.URLError as e:
            logger.warning(f"Summarizer API error: {e.reason}")
            return None
        except TimeoutError:
            logger.warning("Summarizer API timeout")
            return None
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Summarizer API returned an unexpected body: {e}")
            return None

        return clean_model_output(content or "") or None
