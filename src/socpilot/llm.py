"""
LLM Client - transport for OpenAI-compatible chat-completions APIs.

This client works with any OpenAI-compatible API:
- vLLM (http://localhost:8000/v1)
- Ollama (http://localhost:11434/v1)
- DeepSeek, Groq, OpenAI itself

It offers the two operations the agent needs: a blocking completion and a
streaming completion that can be cancelled from another thread. Several
endpoints can be configured; when one fails the client moves on to the next
according to the configured fallback strategy.

Transport problems never escape as exceptions from complete() or stream().
complete() reports them as {"error": ...} and stream() yields a StreamError,
so the agent decides what is retried.
"""

import logging
import random
import threading
import time
from collections.abc import Iterator
from typing import Any

import httpx

from socpilot.config import FallbackStrategy, LLMConfig, LLMEndpoint
from socpilot.stream import StreamAssembler, StreamError, StreamEvent
from socpilot.types import Message, Role

logger = logging.getLogger(__name__)

# Default timeout configuration (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0

RETRYABLE_STATUS_CODES = (429, 503)


class LLMError(Exception):
    """Error from the LLM client."""
    pass


class LLMClient:
    """
    Client for OpenAI-compatible LLM APIs.

    The client is synchronous. stream() is a generator that reads the
    response incrementally; cancel() may be called from any thread and makes
    the generator stop at the next line.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client with configuration.

        Args:
            config: Endpoints, fallback strategy and retry policy
            http_client: Optional pre-built httpx client (used by tests)
        """
        self.config = config or LLMConfig.from_env()
        self._client = http_client or httpx.Client()
        self._owns_client = http_client is None
        self._current_endpoint = 0
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._active_response: httpx.Response | None = None

    # -- endpoint selection --------------------------------------------------

    def has_endpoint(self) -> bool:
        return bool(self.config.endpoints)

    def _select_endpoint(self) -> LLMEndpoint:
        endpoints = self.config.endpoints
        if self.config.fallback_strategy == FallbackStrategy.RANDOM:
            return random.choice(endpoints)
        return endpoints[self._current_endpoint % len(endpoints)]

    def _advance_endpoint(self) -> None:
        if self.config.endpoints:
            self._current_endpoint = (self._current_endpoint + 1) % len(self.config.endpoints)

    def _headers(self, endpoint: LLMEndpoint) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if endpoint.api_key:
            headers["Authorization"] = f"Bearer {endpoint.api_key}"
        return headers

    def _timeout(self, endpoint: LLMEndpoint) -> httpx.Timeout:
        return httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=endpoint.timeout,
            write=DEFAULT_WRITE_TIMEOUT,
            pool=DEFAULT_POOL_TIMEOUT,
        )

    @staticmethod
    def _url(endpoint: LLMEndpoint) -> str:
        return endpoint.base_url.rstrip("/") + "/chat/completions"

    @staticmethod
    def build_payload(
        endpoint: LLMEndpoint,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        temperature: float,
        stream: bool,
        json_mode: bool = False,
        model: str | None = None,
    ) -> dict[str, Any]:
        """Build a chat-completions request body."""
        payload: dict[str, Any] = {
            "messages": messages,
            "temperature": temperature,
            "stream": stream,
        }
        if model or endpoint.model:
            payload["model"] = model or endpoint.model
        if tools:
            payload["tools"] = tools
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    # -- blocking completion -------------------------------------------------

    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.2,
        json_mode: bool = False,
        model: str | None = None,
    ) -> dict[str, Any]:
        """
        Send a non-streaming chat completion request.

        Returns the decoded API response, or {"error": message} when every
        attempt failed. Timeouts, network errors, 429 and 503 are retried on
        the next endpoint; other HTTP errors are returned straight away.
        """
        if not self.has_endpoint():
            return {"error": "No LLM endpoint configured"}

        attempts = max(self.config.max_retries + 1, len(self.config.endpoints))
        last_error = "All LLM endpoints failed"

        for attempt in range(attempts):
            if attempt > 0 and attempt % len(self.config.endpoints) == 0:
                logger.info(
                    f"Retry attempt {attempt}/{attempts - 1} after {self.config.retry_delay}s delay..."
                )
                time.sleep(self.config.retry_delay)

            endpoint = self._select_endpoint()
            payload = self.build_payload(
                endpoint, messages, tools, temperature,
                stream=False, json_mode=json_mode, model=model,
            )
            logger.debug(
                f"Sending chat request with {len(messages)} messages to "
                f"{endpoint.name} (attempt {attempt + 1})"
            )

            try:
                response = self._client.post(
                    self._url(endpoint),
                    json=payload,
                    headers=self._headers(endpoint),
                    timeout=self._timeout(endpoint),
                )
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                logger.warning(f"Request to {endpoint.name} timed out (attempt {attempt + 1}): {e}")
                last_error = f"Request timeout: {e}"

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in RETRYABLE_STATUS_CODES:
                    logger.error(f"HTTP error: {status} - {e.response.text}")
                    return {"error": f"HTTP {status}: {e.response.text}"}
                logger.warning(f"Endpoint {endpoint.name} returned {status} (attempt {attempt + 1})")
                last_error = f"HTTP {status}: {e.response.text}"

            except httpx.RequestError as e:
                logger.warning(f"Request error on {endpoint.name} (attempt {attempt + 1}): {e}")
                last_error = f"Network error: {e}"

            except ValueError as e:
                logger.warning(f"Invalid JSON from {endpoint.name}: {e}")
                last_error = f"JSON parse error: {e}"

            self._advance_endpoint()

        logger.error(f"All {attempts} attempts failed. Last error: {last_error}")
        return {"error": last_error}

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.2,
        model: str | None = None,
    ) -> "ChatResponse":
        """
        Blocking completion parsed into a ChatResponse.

        Raises:
            LLMError: If the request failed or the response had no choices
        """
        data = self.complete(messages, tools=tools, temperature=temperature, model=model)
        return ChatResponse.from_api_response(data)

    def chat_text(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.2,
        json_mode: bool = False,
        model: str | None = None,
    ) -> str:
        """
        Single-turn helper: one optional system message plus one user message.

        Raises:
            LLMError: If the request failed or returned no content
        """
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append(Message.system(system_prompt).to_dict())
        messages.append(Message.user(prompt).to_dict())

        data = self.complete(messages, temperature=temperature, json_mode=json_mode, model=model)
        response = ChatResponse.from_api_response(data)
        if not response.content.strip():
            raise LLMError("Empty response from LLM")
        return response.content

    # -- streaming completion ------------------------------------------------

    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.2,
    ) -> Iterator[StreamEvent]:
        """
        Stream a chat completion.

        Yields StreamChunk, StreamReasoning and ToolCallDelta events as they
        arrive, then exactly one StreamDone or StreamError. After cancel()
        the generator ends without a final event.
        """
        if not self.has_endpoint():
            yield StreamError("No LLM endpoint configured")
            return

        self._cancelled.clear()
        endpoint = self._select_endpoint()
        payload = self.build_payload(endpoint, messages, tools, temperature, stream=True)
        assembler = StreamAssembler()
        logger.debug(f"Starting chat stream with {len(messages)} messages to {endpoint.name}")

        try:
            with self._client.stream(
                "POST",
                self._url(endpoint),
                json=payload,
                headers=self._headers(endpoint),
                timeout=self._timeout(endpoint),
            ) as response:
                with self._lock:
                    self._active_response = response

                if response.status_code >= 400:
                    response.read()
                    self._advance_endpoint()
                    yield StreamError(f"HTTP {response.status_code}: {response.text}")
                    return

                for line in response.iter_lines():
                    if self._cancelled.is_set():
                        return
                    yield from assembler.feed(line)
                    if assembler.done:
                        return

            if not self._cancelled.is_set():
                yield from assembler.finish()

        except httpx.TimeoutException as e:
            if not self._cancelled.is_set():
                self._advance_endpoint()
                yield StreamError(f"Request timeout: {e}")
        except httpx.ConnectError as e:
            if not self._cancelled.is_set():
                self._advance_endpoint()
                yield StreamError(f"Connection error: {e}")
        except httpx.RequestError as e:
            if not self._cancelled.is_set():
                self._advance_endpoint()
                yield StreamError(f"Network error: {e}")
        except httpx.StreamError as e:
            # Closing the response from cancel() lands here.
            if not self._cancelled.is_set():
                yield StreamError(f"Network error: {e}")
        finally:
            with self._lock:
                self._active_response = None

    def cancel(self) -> None:
        """Cancel the in-flight stream, if any. Safe from any thread."""
        self._cancelled.set()
        with self._lock:
            response = self._active_response
        if response is not None:
            logger.debug("Cancelling active stream")
            response.close()

    def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class ChatResponse:
    """
    Response from a chat completion request.

    This wraps the API response and provides convenient access to
    the assistant message, its content and any tool calls.
    """

    def __init__(
        self,
        message: Message,
        finish_reason: str,
        raw_response: dict[str, Any],
    ) -> None:
        self.message = message
        self.finish_reason = finish_reason
        self.raw_response = raw_response

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ChatResponse":
        """Parse an API response into a ChatResponse.

        Raises:
            LLMError: If the response carries an error or has no choices
        """
        if "error" in data:
            raise LLMError(str(data["error"]))
        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid response from LLM")

        choice = choices[0]
        raw_message = dict(choice.get("message") or {})
        raw_message.setdefault("role", Role.ASSISTANT.value)
        message = Message.from_dict(raw_message)

        return cls(
            message=message,
            finish_reason=choice.get("finish_reason") or "stop",
            raw_response=data,
        )

    @property
    def content(self) -> str:
        return self.message.text

    @property
    def tool_calls(self) -> list:
        return self.message.tool_calls or []

    @property
    def has_tool_calls(self) -> bool:
        """Check if the response includes tool calls."""
        return len(self.tool_calls) > 0
