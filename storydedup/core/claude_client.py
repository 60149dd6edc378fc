"""Claude API client with task-based model selection and error mapping."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

import anthropic

from storydedup.core.config import get_config
from storydedup.core.exceptions import ClaudeAPIError, RateLimitError, TransientError
from storydedup.core.logger import get_logger
from storydedup.core.models import ClaudeTask

logger = get_logger(__name__)


@dataclass(slots=True)
class ClaudeResponse:
    """Response wrapper for Claude API calls."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str


@dataclass
class _TokenUsage:
    """Cumulative token usage tracker."""

    total_input: int = 0
    total_output: int = 0
    call_count: int = 0


class ClaudeClient:
    """Claude API client with task-based model/parameter auto-selection.

    The SDK's own retries are disabled: callers decide how often a
    transient failure is retried, so every failure surfaces as one of
    ``TransientError``, ``RateLimitError`` or ``ClaudeAPIError``.

    Example::

        client = ClaudeClient()
        response = client.generate(
            ClaudeTask.SEMANTIC_GROUPING,
            prompt,
            system_prompt="You group news posts by story.",
        )
        print(response.content)
    """

    def __init__(self, timeout_sec: float | None = None) -> None:
        config = get_config()
        if not config.anthropic_api_key:
            raise ClaudeAPIError(
                "ANTHROPIC_API_KEY is not set",
                {"hint": "Set ANTHROPIC_API_KEY in your .env file"},
            )
        self._config = config.claude
        self._timeout = timeout_sec if timeout_sec is not None else self._config.timeout_sec
        self._client = anthropic.Anthropic(
            api_key=config.anthropic_api_key,
            timeout=self._timeout,
            max_retries=0,
        )
        self._usage = _TokenUsage()
        self._usage_lock = threading.Lock()
        logger.info(
            "claude_client_initialized",
            default_model=self._config.default_model,
            timeout_sec=self._timeout,
        )

    def _resolve_params(self, task: ClaudeTask) -> tuple[str, int, float]:
        """Resolve model, max_tokens, and temperature for a task.

        Args:
            task: The Claude task type.

        Returns:
            Tuple of (model_id, max_tokens, temperature).
        """
        task_key = task.value
        model = self._config.models.get(task_key, self._config.default_model)
        max_tokens = self._config.max_tokens.get(task_key, 1024)
        temperature = self._config.temperature.get(task_key, 0.3)
        return model, max_tokens, temperature

    def generate(
        self,
        task: ClaudeTask,
        user_message: str,
        system_prompt: str = "",
    ) -> ClaudeResponse:
        """Generate a single-turn response.

        Args:
            task: Task type for model/parameter selection.
            user_message: The user message to send.
            system_prompt: Optional system prompt.

        Returns:
            ClaudeResponse with the generated content.

        Raises:
            TransientError: On timeout, connection or server errors.
            RateLimitError: If rate limited.
            ClaudeAPIError: On non-retryable API errors.
        """
        model, max_tokens, temperature = self._resolve_params(task)

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": user_message}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        logger.debug("claude_api_call", task=task.value, model=model)

        response = self._call_api(**kwargs)

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        result = ClaudeResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason or "",
        )

        with self._usage_lock:
            self._usage.total_input += result.input_tokens
            self._usage.total_output += result.output_tokens
            self._usage.call_count += 1

        logger.info(
            "claude_api_response",
            task=task.value,
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            stop_reason=result.stop_reason,
        )
        return result

    def _call_api(self, **kwargs: Any) -> anthropic.types.Message:
        """Call the Claude API once, mapping SDK errors to project errors.

        Args:
            **kwargs: Arguments to pass to messages.create().

        Returns:
            The API Message response.

        Raises:
            RateLimitError: On HTTP 429.
            TransientError: On timeout, connection or 5xx errors.
            ClaudeAPIError: For other API errors.
        """
        try:
            return self._client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            logger.warning("claude_rate_limited", error=str(e))
            raise RateLimitError("Claude rate limit exceeded", {"error": str(e)}) from e
        except anthropic.APITimeoutError as e:
            logger.warning("claude_timeout", timeout_sec=self._timeout)
            raise TransientError(
                "Claude request timed out",
                {"timeout_sec": self._timeout},
            ) from e
        except anthropic.APIConnectionError as e:
            logger.warning("claude_connection_error", error=str(e))
            raise TransientError("Claude connection error", {"error": str(e)}) from e
        except anthropic.InternalServerError as e:
            logger.warning("claude_internal_error", error=str(e))
            raise TransientError(
                f"Claude server error: {e.status_code}",
                {"status_code": e.status_code},
            ) from e
        except anthropic.APIStatusError as e:
            raise ClaudeAPIError(
                f"Claude API error: {e.status_code}",
                {"status_code": e.status_code, "message": str(e)},
            ) from e

    @property
    def token_usage(self) -> dict[str, int]:
        """Get cumulative token usage statistics.

        Returns:
            Dict with total_input_tokens, total_output_tokens, and call_count.
        """
        with self._usage_lock:
            return {
                "total_input_tokens": self._usage.total_input,
                "total_output_tokens": self._usage.total_output,
                "call_count": self._usage.call_count,
            }
