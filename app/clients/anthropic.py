"""Anthropic API client with rate limiting, streaming and error handling."""

import asyncio
import json
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

import tiktoken
from anthropic import APIError, AsyncAnthropic
from anthropic.types import ContentBlock as AnthropicContentBlock
from anthropic.types import Message
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from app.models.llm import ContentBlock, TextBlock, ThinkingBlock, ToolResultBlock, ToolUseBlock
from app.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DeltaCallback = Callable[[str], Awaitable[None]]

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicMessage(BaseModel):
    """Message format for Anthropic API."""

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class TokenUsage:
    """Token usage information from Anthropic API."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


@dataclass
class AnthropicResponse:
    """Structured response from Anthropic API."""

    content: list[ContentBlock]
    stop_reason: str | None
    usage: TokenUsage
    model: str


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.1
    max_retries: int = 3
    retry_delay: float = 1.0
    # 0 disables extended thinking
    thinking_budget: int = 0

    # Token limits for validation and truncation
    max_message_tokens: int = 8000  # Maximum tokens per individual message
    max_conversation_tokens: int = 200000  # Claude 4 Sonnet default context window
    token_headroom: int = 8000  # Reserve tokens for response

    extra_headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "AnthropicConfig":
        return cls(
            model=os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL),
            max_tokens=int(os.getenv("ANTHROPIC_MAX_TOKENS", "4096")),
            thinking_budget=int(os.getenv("ANTHROPIC_THINKING_BUDGET", "0")),
        )


class AnthropicRateLimiter:
    """Moving-window rate limiter for requests and tokens."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def _wait_for_window(self, limit: Any, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the request and token limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=max(1, estimated_tokens)):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")


def _block_text(block: ContentBlock) -> str:
    if isinstance(block, TextBlock):
        return block.text
    if isinstance(block, ThinkingBlock):
        return block.thinking
    if isinstance(block, ToolUseBlock):
        return block.name + json.dumps(block.input)
    return block.content


class AnthropicClient:
    """Low-level Anthropic API client with rate limiting and error handling."""

    tokenizer: tiktoken.Encoding | None = None
    api_key: str
    client: AsyncAnthropic
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter = AnthropicRateLimiter()

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.api_key = anthropic_api_key

        self.client = AsyncAnthropic(api_key=self.api_key)
        self.config = config or AnthropicConfig.from_env()

        # Initialize tokenizer for token estimation
        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    async def close(self) -> None:
        await self.client.close()

    async def _prepare_request(
        self,
        messages: list[AnthropicMessage],
        system_prompt: str,
        tools: list[AnthropicTool] | None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        truncated_messages = self.truncate_conversation(messages, system_prompt, tools)

        # Estimate tokens for rate limiting
        estimated_tokens = self._estimate_tokens(truncated_messages, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": kwargs.get("model", self.config.model),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "system": system_prompt,
            "messages": [msg.model_dump(exclude_none=True) for msg in truncated_messages],
        }
        if tools:
            request_params["tools"] = [tool.model_dump(exclude_none=True) for tool in tools]

        thinking_budget = kwargs.get("thinking_budget", self.config.thinking_budget)
        if thinking_budget:
            # Temperature must stay at its default while thinking is enabled
            request_params["thinking"] = {"type": "enabled", "budget_tokens": thinking_budget}
        else:
            request_params["temperature"] = kwargs.get("temperature", self.config.temperature)

        if self.config.extra_headers:
            request_params["extra_headers"] = self.config.extra_headers

        logger.debug(
            f"Prepared request with {len(truncated_messages)} messages, {len(tools) if tools else 0} tools, "
            f"model: {request_params['model']}"
        )
        return request_params

    async def create_message(
        self,
        messages: list[AnthropicMessage],
        system_prompt: str,
        tools: list[AnthropicTool] | None = None,
        **kwargs: Any,
    ) -> AnthropicResponse:
        """Create a message with Claude API.

        Args:
            messages: Conversation history
            system_prompt: System prompt for Claude
            tools: Available tools for Claude
            **kwargs: Additional parameters for Claude API

        Returns:
            Structured Anthropic response
        """
        request_params = await self._prepare_request(messages, system_prompt, tools, **kwargs)
        response: Message = await self._request_with_retries(lambda: self.client.messages.create(**request_params))
        return self._to_response(response)

    async def stream_message(
        self,
        messages: list[AnthropicMessage],
        system_prompt: str,
        tools: list[AnthropicTool] | None = None,
        on_text: DeltaCallback | None = None,
        on_thinking: DeltaCallback | None = None,
        **kwargs: Any,
    ) -> AnthropicResponse:
        """Stream a message, forwarding text and thinking deltas as they arrive.

        Streams are not retried: once deltas have been forwarded a retry
        would duplicate output.

        Returns:
            The assembled final message
        """
        request_params = await self._prepare_request(messages, system_prompt, tools, **kwargs)

        async with self.client.messages.stream(**request_params) as stream:
            async for event in stream:
                if event.type != "content_block_delta":
                    continue
                delta = event.delta
                if delta.type == "text_delta" and on_text:
                    await on_text(delta.text)
                elif delta.type == "thinking_delta" and on_thinking:
                    await on_thinking(delta.thinking)
            response = await stream.get_final_message()

        return self._to_response(response)

    def _to_response(self, response: Message) -> AnthropicResponse:
        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
                cache_creation_input_tokens=response.usage.cache_creation_input_tokens or 0,
                cache_read_input_tokens=response.usage.cache_read_input_tokens or 0,
            )

        logger.debug(
            f"Response received - Stop reason: {response.stop_reason}, Content blocks: {len(response.content)}"
        )

        return AnthropicResponse(
            content=self._convert_content_blocks(response.content),
            stop_reason=response.stop_reason,
            usage=usage,
            model=response.model,
        )

    async def _request_with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        """Execute Anthropic API request with retry logic."""
        for attempt in range(self.config.max_retries):
            try:
                return await call()

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code == 429:  # Rate limit exceeded
                    retry_after = 60
                    response = getattr(e, "response", None)
                    if response is not None:
                        retry_after = int(response.headers.get("retry-after", 60))

                    if retry_after < 120 and attempt < self.config.max_retries - 1:
                        await asyncio.sleep(retry_after)
                        continue

                elif status_code and status_code >= 500 and attempt < self.config.max_retries - 1:
                    # Server error, retry with exponential backoff
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                # Re-raise if not retryable or max retries reached
                raise

        raise RuntimeError(f"Failed to complete request after {self.config.max_retries} attempts")

    def _convert_content_blocks(self, anthropic_content: list[AnthropicContentBlock]) -> list[ContentBlock]:
        """Convert Anthropic content blocks to our ContentBlock types."""
        converted_blocks: list[ContentBlock] = []
        for block in anthropic_content:
            block_dict = block.model_dump()
            block_type = block_dict.get("type")

            if block_type == "text":
                converted_blocks.append(TextBlock.model_validate(block_dict))
            elif block_type == "thinking":
                converted_blocks.append(ThinkingBlock.model_validate(block_dict))
            elif block_type == "tool_use":
                converted_blocks.append(ToolUseBlock.model_validate(block_dict))
            else:
                logger.warning(f"Unknown content block type: {block_type}")

        return converted_blocks

    def _message_tokens(self, message: AnthropicMessage) -> int:
        if isinstance(message.content, str):
            return self.estimate_message_tokens(message.content)
        return self.estimate_message_tokens("".join(_block_text(block) for block in message.content))

    def _estimate_tokens(self, messages: list[AnthropicMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting."""
        return self.estimate_message_tokens(system_prompt) + sum(self._message_tokens(m) for m in messages)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def truncate_conversation(
        self, messages: list[AnthropicMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[AnthropicMessage]:
        """Truncate conversation from the beginning to fit within token limits.

        The kept history always starts with a plain user message, so a tool
        result is never separated from the tool call it answers.

        Args:
            messages: Conversation messages
            system_prompt: System prompt
            tools: Available tools

        Returns:
            Truncated message list that fits within limits
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom

        system_tokens = self.estimate_message_tokens(system_prompt)

        tool_tokens = 0
        if tools:
            tool_content = ""
            for tool in tools:
                tool_content += tool.name + tool.description + str(tool.input_schema)
            tool_tokens = self.estimate_message_tokens(tool_content)

        available_tokens -= system_tokens + tool_tokens

        start = len(messages)
        current_tokens = 0
        for index in range(len(messages) - 1, -1, -1):
            message_tokens = self._message_tokens(messages[index])
            if current_tokens + message_tokens > available_tokens:
                break
            current_tokens += message_tokens
            start = index

        while start < len(messages) and not self._is_turn_start(messages[start]):
            start += 1

        if start == len(messages):
            # Nothing fits: keep the conversation from its latest user prompt
            start = next(
                (i for i in range(len(messages) - 1, -1, -1) if self._is_turn_start(messages[i])),
                len(messages) - 1,
            )

        truncated_messages = messages[start:]
        if len(truncated_messages) < len(messages):
            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated_messages)} messages "
                f"to fit within {available_tokens} token limit"
            )

        return truncated_messages

    @staticmethod
    def _is_turn_start(message: AnthropicMessage) -> bool:
        return message.role == "user" and isinstance(message.content, str)


def tool_result_block(tool_use_id: str, result: Any, is_error: bool = False) -> ToolResultBlock:
    """Serialize a tool's return value for the model."""
    content = result if isinstance(result, str) else json.dumps(result, ensure_ascii=False, default=str)
    return ToolResultBlock(tool_use_id=tool_use_id, content=content, is_error=is_error)
