"""
Remote generative backend: Claude + the built-in web_search tool.

``AnthropicBackend.generate`` never raises for API failures. It returns a
tagged result instead:

* ``GroundedReply``   — reply text plus optional grounding metadata
* ``BackendFailure``  — a ``FailureKind`` derived from the SDK's typed
                        exceptions, the backend message and HTTP status

Search grounding and a JSON response schema are mutually exclusive; asking
for both is refused locally with ``FailureKind.INCOMPATIBLE_OPTIONS``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

import anthropic

from core.models import GroundingChunk, GroundingMetadata, WebSource

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

#: Tool definition passed to the Claude messages API.
WEB_SEARCH_TOOL = {
    "type": "web_search_20250305",
    "name": "web_search",
}

_TOOL_RESULT_BLOCK = "web_search_tool_result"


# ── Result types ───────────────────────────────────────────────────────────────


class FailureKind(str, Enum):
    """Why a backend call failed."""

    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid_request"
    INCOMPATIBLE_OPTIONS = "incompatible_options"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    CONNECTION = "connection"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class GroundedReply:
    """Successful reply: free-form text plus the search evidence behind it."""

    text: str
    grounding: Optional[GroundingMetadata] = None


@dataclass(frozen=True)
class BackendFailure:
    """Structured description of a failed backend call."""

    kind: FailureKind
    message: str
    status_code: Optional[int] = None


BackendResult = Union[GroundedReply, BackendFailure]


# ── Response helpers ───────────────────────────────────────────────────────────


def _reply_text(blocks: list[object]) -> str:
    """Join the text blocks written after the last search result block."""
    last_tool = -1
    for index, block in enumerate(blocks):
        if getattr(block, "type", None) == _TOOL_RESULT_BLOCK:
            last_tool = index
    return "".join(
        getattr(block, "text", "") or ""
        for block in blocks[last_tool + 1:]
        if getattr(block, "type", None) == "text"
    )


def _grounding(blocks: list[object]) -> Optional[GroundingMetadata]:
    """Collect every web_search_result as a grounding chunk, in order.

    Returns ``None`` when no search ran at all.
    """
    chunks: list[GroundingChunk] = []
    searched = False
    for block in blocks:
        if getattr(block, "type", None) != _TOOL_RESULT_BLOCK:
            continue
        searched = True
        content = getattr(block, "content", None)
        # An errored search carries an error object instead of a result list
        if not isinstance(content, list):
            continue
        for item in content:
            if getattr(item, "type", None) == "web_search_result":
                chunks.append(GroundingChunk(web=WebSource(
                    uri=getattr(item, "url", None),
                    title=getattr(item, "title", None),
                )))
    return GroundingMetadata(grounding_chunks=chunks) if searched else None


def _failure_from(exc: anthropic.APIError) -> BackendFailure:
    """Translate an SDK exception into a ``BackendFailure``."""
    message = getattr(exc, "message", None) or str(exc)
    status = getattr(exc, "status_code", None)

    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        kind = FailureKind.AUTHENTICATION
    elif isinstance(exc, anthropic.BadRequestError):
        kind = FailureKind.INVALID_REQUEST
    elif isinstance(exc, anthropic.RateLimitError):
        kind = FailureKind.RATE_LIMITED
    elif isinstance(exc, anthropic.InternalServerError):
        kind = FailureKind.SERVER
    elif isinstance(exc, anthropic.APIConnectionError):
        kind = FailureKind.CONNECTION
    else:
        kind = FailureKind.UNKNOWN

    return BackendFailure(kind=kind, message=message, status_code=status)


# ── Backend ────────────────────────────────────────────────────────────────────


class AnthropicBackend:
    """Single-shot Claude calls with optional web search grounding.

    The Anthropic client is lazy-initialised so the backend can be built
    without a live API key (tests swap ``_client`` for a mock).
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._client: object = None  # Lazy-initialised anthropic.Anthropic

    @property
    def client(self) -> object:
        """Lazy-initialise and return the Anthropic SDK client."""
        if self._client is None:
            # No SDK retries: a failed call surfaces to the user as-is.
            self._client = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key,
                max_retries=0,
            )
        return self._client

    def generate(
        self,
        prompt: str,
        *,
        search_grounding: bool = True,
        response_schema: Optional[dict] = None,
    ) -> BackendResult:
        """Send one user message and return the tagged result.

        Args:
            prompt: The full user-role message.
            search_grounding: Enable the web_search tool.
            response_schema: Optional JSON schema for structured output.
                Cannot be combined with ``search_grounding``.

        Returns:
            ``GroundedReply`` on success, ``BackendFailure`` otherwise.
        """
        if search_grounding and response_schema is not None:
            return BackendFailure(
                kind=FailureKind.INCOMPATIBLE_OPTIONS,
                message="Tool use with a structured response format is unsupported.",
            )

        kwargs: dict = {
            "model": self.settings.analysis_model,
            "max_tokens": self.settings.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if search_grounding:
            kwargs["tools"] = [{**WEB_SEARCH_TOOL, "max_uses": self.settings.max_web_searches}]
        if response_schema is not None:
            kwargs["output_config"] = {
                "format": {"type": "json_schema", "schema": response_schema}
            }

        logger.info(
            "Calling model=%s search_grounding=%s", self.settings.analysis_model, search_grounding
        )
        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            return _failure_from(exc)

        blocks = list(getattr(response, "content", None) or [])
        return GroundedReply(text=_reply_text(blocks), grounding=_grounding(blocks))
