"""
LLM Client - Abstraction over OpenAI-compatible chat backends.

This client works with any OpenAI-compatible API:
- vLLM (http://localhost:8000/v1)
- Ollama (http://localhost:11434/v1)
- OpenAI itself

The loop only needs send(): give it the materialized transcript and the
function schemas, get back either free text or one function call.

Includes timeout and retry logic for resilience against API hangs.
"""

import json
import logging
import time
from typing import Any

import httpx

from scriptagent.config import LLMConfig
from scriptagent.types import FunctionCall, Message, Role

logger = logging.getLogger(__name__)

# Default timeout configuration (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 180.0  # LLM responses can take a while
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0

# Retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 60.0


def message_to_api(message: Message) -> dict[str, Any]:
    """Convert a transcript entry to the OpenAI chat message format."""
    if message.role == Role.ASSISTANT and message.function_call is not None:
        call = message.function_call
        return {
            "role": "assistant",
            "content": message.content or None,
            "tool_calls": [{
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": json.dumps(call.arguments),
                },
            }],
        }

    if message.role == Role.FUNCTION:
        if message.call_id:
            return {
                "role": "tool",
                "tool_call_id": message.call_id,
                "content": message.content,
            }
        # No call to attach to; show it as plain feedback
        return {
            "role": "user",
            "content": f"[{message.name or 'function'}] {message.content}",
        }

    return {"role": message.role.value, "content": message.content}


class LLMClient:
    """
    Synchronous client for OpenAI-compatible LLM APIs.

    Timeouts, 429 and 503 responses and network errors are retried; other
    HTTP errors fail immediately with LLMError.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client with configuration.

        Args:
            config: LLM configuration (model, API key, etc.)
            max_retries: Maximum number of retries for timeout/network errors
            retry_delay: Seconds to wait before retrying after a timeout
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or LLMConfig.from_env()
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        timeout = httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=DEFAULT_READ_TIMEOUT,
            write=DEFAULT_WRITE_TIMEOUT,
            pool=DEFAULT_POOL_TIMEOUT,
        )

        self._client = httpx.Client(
            base_url=self.config.base_url,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def send(
        self,
        messages: list[Message],
        functions: list[dict[str, Any]] | None = None,
    ) -> "ChatResponse":
        """
        Send the transcript and return the model's reply.

        Raises:
            LLMError: If all retries are exhausted or a non-retryable error occurs
        """
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [message_to_api(m) for m in messages],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if functions:
            payload["tools"] = functions
            payload["tool_choice"] = "auto"

        return self._post_with_retry(payload)

    def _post_with_retry(self, payload: dict[str, Any]) -> "ChatResponse":
        last_error: Exception | None = None
        waited = False

        for attempt in range(self.max_retries + 1):
            # a 429 has already waited out Retry-After
            if attempt > 0 and not waited:
                logger.info(f"Retry attempt {attempt}/{self.max_retries} after {self.retry_delay}s delay...")
                time.sleep(self.retry_delay)

            logger.debug(f"Sending chat request with {len(payload['messages'])} messages (attempt {attempt + 1})")
            waited = False

            try:
                response = self._client.post("/chat/completions", json=payload)
                response.raise_for_status()
                return ChatResponse.from_api_response(response.json())

            except httpx.TimeoutException as e:
                logger.warning(f"Request timed out (attempt {attempt + 1}): {e}")
                last_error = e
                continue

            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429:
                    wait_time = self.retry_delay
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after:
                        try:
                            wait_time = float(retry_after)
                        except ValueError:
                            pass
                    logger.warning(f"Rate limited. Waiting {wait_time}s")
                    time.sleep(wait_time)
                    waited = True
                    last_error = e
                    continue

                if e.response.status_code == 503:
                    logger.warning(f"Service unavailable (attempt {attempt + 1}): {e}")
                    last_error = e
                    continue

                logger.error(f"HTTP error: {e.response.status_code} - {e.response.text}")
                raise LLMError(f"HTTP {e.response.status_code}: {e.response.text}") from e

            except httpx.RequestError as e:
                logger.warning(f"Request error (attempt {attempt + 1}): {e}")
                last_error = e
                continue

        logger.error(f"All {self.max_retries + 1} attempts failed. Last error: {last_error}")
        raise LLMError(f"Request failed after {self.max_retries + 1} attempts: {last_error}") from last_error

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class ChatResponse:
    """
    Response from a chat completion request.

    The loop runs one function per turn, so function_call is the first
    tool call the model made (or None for a plain text reply).
    """

    def __init__(
        self,
        content: str | None,
        function_calls: list[FunctionCall] | None = None,
        finish_reason: str = "stop",
        raw_response: dict[str, Any] | None = None,
    ) -> None:
        self.content = content or ""
        self.function_calls = function_calls or []
        self.finish_reason = finish_reason
        self.raw_response = raw_response or {}

    @classmethod
    def text(cls, content: str) -> "ChatResponse":
        return cls(content=content)

    @classmethod
    def call(cls, name: str, arguments: dict[str, Any] | None = None, call_id: str = "") -> "ChatResponse":
        return cls(
            content=None,
            function_calls=[FunctionCall(name=name, arguments=arguments or {}, id=call_id)],
            finish_reason="tool_calls",
        )

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ChatResponse":
        """Parse an API response into a ChatResponse."""
        try:
            choice = data["choices"][0]
        except (KeyError, IndexError) as e:
            raise LLMError(f"Malformed response: {data!r}") from e
        message = choice.get("message", {})

        function_calls: list[FunctionCall] = []
        for tc in message.get("tool_calls") or []:
            raw_arguments = tc["function"].get("arguments") or "{}"
            try:
                arguments = json.loads(raw_arguments)
            except json.JSONDecodeError:
                arguments = {"raw": raw_arguments}
            if not isinstance(arguments, dict):
                arguments = {"value": arguments}

            function_calls.append(FunctionCall(
                id=tc.get("id", ""),
                name=tc["function"]["name"],
                arguments=arguments,
            ))

        return cls(
            content=message.get("content"),
            function_calls=function_calls,
            finish_reason=choice.get("finish_reason", "stop"),
            raw_response=data,
        )

    @property
    def function_call(self) -> FunctionCall | None:
        return self.function_calls[0] if self.function_calls else None

    @property
    def has_function_call(self) -> bool:
        return bool(self.function_calls)


class LLMError(Exception):
    """Error from the LLM client."""
    pass
