"""
Analysis pipeline for the Geopolitical Analyzer.

Turns an ``AnalysisRequest`` into an ``AnalysisDraft`` ready for history.

Flow
────
1. credential check          → ConfigurationError
2. build_prompt(country, period) → fixed template, pure
3. backend.generate(prompt)  → GroundedReply | BackendFailure
                               (failures → CredentialError / ConfigurationError / BackendError)
4. strip_fence(text)         → removes one ```lang ... ``` wrapper, if any
5. parse_payload(text)       → dict                    (FormatError)
6. validate_payload(data)    → StructuredAnalysis      (ValidationError)
7. extract_citations(meta)   → list[Citation]
8. render_text(analysis)     → plain-text rendering, also used to backfill
                               history entries saved without one
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, Optional

import pydantic

from core.backend import AnthropicBackend, BackendFailure, FailureKind
from core.errors import BackendError, ConfigurationError, CredentialError, FormatError, ValidationError
from core.models import (
    UNTITLED_SOURCE,
    AnalysisDraft,
    AnalysisRequest,
    Citation,
    GroundingMetadata,
    Sentiment,
    StructuredAnalysis,
)

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

#: Payload keys that must be present (and non-empty, for the strings).
REQUIRED_FIELDS: tuple[str, ...] = (
    "eventSummary",
    "geopoliticalSignificance",
    "overallSentiment",
    "keyThemes",
)

NOT_PROVIDED = "Not provided."
NO_SENTIMENT = "N/A"
NO_THEMES = "None identified."

MISSING_CREDENTIAL_MESSAGE = (
    "The Geopolitical Analyzer is not configured correctly. API key is missing."
)
INVALID_CREDENTIAL_MESSAGE = "Invalid API Key. Please check your API key configuration."
REQUEST_CONFIGURATION_MESSAGE = (
    "There was a configuration issue with the API request. "
    "Please contact support if this persists."
)
UNEXPECTED_FORMAT_MESSAGE = (
    "The API returned an unexpected response format. Could not parse analysis data. "
    "The model may not have returned valid JSON."
)

# Substring fallbacks for backends that report these conditions only in prose.
_CREDENTIAL_MARKERS = ("API key not valid", "invalid x-api-key")
_CONFIGURATION_MARKERS = ("Tool use with a response mime type", "Request payload is invalid")

_FENCE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)

_PROMPT_TEMPLATE = """\
You are a geopolitical analyst.
For the country: "{country}"
And the time period: "{time_period}" (e.g., "the last month", "recent weeks", "January 2024")

Your task is to provide a structured analysis in JSON format. The JSON object should have the following keys:
- "eventSummary": Identify and summarize key geopolitical events related to this country during this period. Focus on events with international implications or those that highlight significant domestic shifts affecting its geopolitical stance.
- "geopoliticalSignificance": Analyze the geopolitical significance of these events. Discuss impacts on regional stability, international relations, economic factors, and power dynamics.
- "keyActors": Identify key international and domestic actors involved and their roles or influence concerning these events.
- "futureImplications": Briefly outline potential future implications or trends stemming from these events.
- "overallSentiment": Provide an overall sentiment ({sentiments}) regarding the country's geopolitical situation during this period, based on the identified events.
- "keyThemes": Identify 3-5 key themes or topics that these events revolve around (e.g., 'Economic Stability', 'International Alliances', 'Humanitarian Crisis'). Provide this as an array of strings.

Use web search to ensure your information is current and well-grounded.
Ensure the response is detailed, insightful, and strictly adheres to the JSON format described.
Do not include any introductory or concluding text outside the main JSON object.
"""


# ── Pure helpers ───────────────────────────────────────────────────────────────


def build_prompt(country: str, time_period: str) -> str:
    """Render the fixed analysis prompt for *country* and *time_period*."""
    sentiments = (
        f"'{Sentiment.POSITIVE.value}', '{Sentiment.NEGATIVE.value}', "
        f"or '{Sentiment.NEUTRAL.value}'"
    )
    return _PROMPT_TEMPLATE.format(
        country=country, time_period=time_period, sentiments=sentiments
    )


def strip_fence(text: str) -> str:
    """Remove a single surrounding code fence from *text*.

    ``"```json\\n{...}\\n```"`` becomes ``"{...}"``. Text without a fence is
    returned trimmed but otherwise unchanged.

    Examples:
        >>> strip_fence('```json\\n{"a": 1}\\n```')
        '{"a": 1}'
        >>> strip_fence('  {"a": 1} ')
        '{"a": 1}'
    """
    stripped = text.strip()
    match = _FENCE.match(stripped)
    if match and match.group(2):
        return match.group(2).strip()
    return stripped


def parse_payload(text: str) -> dict[str, Any]:
    """Parse unfenced reply text into a JSON object.

    Raises:
        FormatError: If *text* is not JSON, or is JSON but not an object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FormatError(UNEXPECTED_FORMAT_MESSAGE) from exc
    if not isinstance(data, dict):
        raise FormatError(UNEXPECTED_FORMAT_MESSAGE)
    return data


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_payload(data: dict[str, Any]) -> StructuredAnalysis:
    """Check required fields and build a ``StructuredAnalysis``.

    ``keyThemes`` only has to be present; an empty list is accepted.
    ``keyActors`` and ``futureImplications`` may be missing entirely.

    Raises:
        ValidationError: Naming every missing or ill-typed field.
    """
    missing = [name for name in REQUIRED_FIELDS if _is_absent(data.get(name))]
    if missing:
        raise ValidationError(missing)

    try:
        return StructuredAnalysis.model_validate(data)
    except pydantic.ValidationError as exc:
        invalid = sorted({str(err["loc"][0]) if err["loc"] else "payload" for err in exc.errors()})
        raise ValidationError(invalid) from exc


def extract_citations(grounding: Optional[GroundingMetadata]) -> list[Citation]:
    """Project grounding chunks with a web URI into citations.

    Source order is kept and repeated URIs are kept as well.
    """
    if grounding is None:
        return []
    citations: list[Citation] = []
    for chunk in grounding.grounding_chunks:
        web = chunk.web
        if web is None or not web.uri or not web.uri.strip():
            continue
        citations.append(Citation(uri=web.uri, title=web.title or UNTITLED_SOURCE))
    return citations


def render_text(analysis: StructuredAnalysis) -> str:
    """Render *analysis* as labelled plain-text sections.

    Never raises: empty fields are replaced with fixed placeholders.
    """
    themes = ", ".join(analysis.key_themes) if analysis.key_themes else NO_THEMES
    sections = [
        f"Event Summary:\n{analysis.event_summary or NOT_PROVIDED}",
        f"Geopolitical Significance:\n{analysis.geopolitical_significance or NOT_PROVIDED}",
        f"Key Actors:\n{analysis.key_actors or NOT_PROVIDED}",
        f"Future Implications:\n{analysis.future_implications or NOT_PROVIDED}",
        f"Overall Sentiment: {analysis.overall_sentiment or NO_SENTIMENT}",
        f"Key Themes: {themes}",
    ]
    return "\n\n".join(sections)


def _raise_for_failure(failure: BackendFailure) -> None:
    message = failure.message or ""
    logger.warning("Backend call failed kind=%s: %s", failure.kind.value, message)

    if failure.kind is FailureKind.AUTHENTICATION or any(
        marker in message for marker in _CREDENTIAL_MARKERS
    ):
        raise CredentialError(INVALID_CREDENTIAL_MESSAGE)
    if failure.kind is FailureKind.INCOMPATIBLE_OPTIONS or any(
        marker in message for marker in _CONFIGURATION_MARKERS
    ):
        raise ConfigurationError(REQUEST_CONFIGURATION_MESSAGE)
    raise BackendError(
        f"Failed to analyze geopolitical events. {message or 'An unexpected API error occurred.'}",
        detail=message,
        kind=failure.kind.value,
        upstream_status=failure.status_code,
    )


# ── Pipeline ───────────────────────────────────────────────────────────────────


class AnalysisPipeline:
    """Runs one grounded analysis end to end.

    Args:
        settings: Application configuration; holds the single credential.
        backend: Backend to call. Defaults to ``AnthropicBackend(settings)``.
    """

    def __init__(self, settings: Settings, backend: Optional[AnthropicBackend] = None) -> None:
        self.settings = settings
        self.backend = backend or AnthropicBackend(settings)

    def run(self, request: AnalysisRequest) -> AnalysisDraft:
        """Analyse *request* and return a draft ready for ``HistoryStore.insert``.

        Raises:
            ConfigurationError: No credential, or unsupported request setup.
            CredentialError: The backend rejected the credential.
            BackendError: Any other backend failure.
            FormatError: The reply is not a JSON object.
            ValidationError: Required fields are missing.
        """
        if not self.settings.has_credential:
            logger.error("API key is not configured.")
            raise ConfigurationError(MISSING_CREDENTIAL_MESSAGE)

        logger.info("Analysing country=%r time_period=%r", request.country, request.time_period)
        prompt = build_prompt(request.country, request.time_period)

        result = self.backend.generate(prompt, search_grounding=True)
        if isinstance(result, BackendFailure):
            _raise_for_failure(result)

        try:
            data = parse_payload(strip_fence(result.text))
        except FormatError:
            logger.warning("Failed to parse reply as JSON. Raw reply: %r", result.text)
            raise

        try:
            analysis = validate_payload(data)
        except ValidationError as exc:
            logger.warning("Reply missing fields %s; got keys %s", exc.missing_fields, sorted(data))
            raise

        citations = extract_citations(result.grounding)
        logger.info("Analysis complete: %d citations", len(citations))
        return AnalysisDraft(
            request=request,
            analysis=analysis,
            citations=citations,
            rendered_text=render_text(analysis),
        )
