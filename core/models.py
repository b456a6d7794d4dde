"""
Pydantic models shared across the Geopolitical Analyzer core.

Python attributes are snake_case; the JSON seen by the model, the browser
and the history blob is camelCase (``eventSummary``, ``timePeriod``, ...).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

UNTITLED_SOURCE = "Untitled Source"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Sentiment(str, Enum):
    """Sentiment labels the model is asked to choose from."""

    POSITIVE = "Positive"
    NEGATIVE = "Negative"
    NEUTRAL = "Neutral"


class AnalysisRequest(_CamelModel):
    """A country + time window to analyse."""

    country: str
    time_period: str


class StructuredAnalysis(_CamelModel):
    """The validated structured payload returned by the model."""

    event_summary: str
    geopolitical_significance: str
    key_actors: str = ""
    future_implications: str = ""
    #: Usually a ``Sentiment`` value, but any other label passes through.
    overall_sentiment: str
    key_themes: list[str]

    @field_validator("key_actors", "future_implications", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str:
        """Optional prose fields accept whatever the model sent, as text."""
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return ", ".join(str(item) for item in value)
        return value if isinstance(value, str) else str(value)


class Citation(_CamelModel):
    """A web source backing the analysis."""

    uri: str
    title: str = UNTITLED_SOURCE


class WebSource(BaseModel):
    uri: Optional[str] = None
    title: Optional[str] = None


class GroundingChunk(BaseModel):
    """One piece of search evidence attached to a reply."""

    web: Optional[WebSource] = None


class GroundingMetadata(BaseModel):
    grounding_chunks: list[GroundingChunk] = Field(default_factory=list)


class AnalysisDraft(_CamelModel):
    """A completed analysis that has not been stored in history yet."""

    request: AnalysisRequest
    analysis: StructuredAnalysis
    citations: list[Citation] = Field(default_factory=list)
    rendered_text: str = ""


class AnalysisRecord(AnalysisDraft):
    """A persisted history entry: a draft plus its id and creation time."""

    id: str
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_shape(cls, data: Any) -> Any:
        """Accept entries written by earlier releases.

        Legacy entries were flat: ``{id, country, timePeriod, timestamp,
        analysis, sources, fullAnalysisText}`` with ``timestamp`` in
        milliseconds since the epoch.
        """
        if not isinstance(data, dict) or "request" in data or "country" not in data:
            return data
        upgraded = {
            "id": str(data.get("id", "")),
            "request": {
                "country": data.get("country"),
                "timePeriod": data.get("timePeriod"),
            },
            "analysis": data.get("analysis"),
            "citations": data.get("sources") or [],
            "renderedText": data.get("fullAnalysisText") or "",
        }
        timestamp = data.get("timestamp")
        if isinstance(timestamp, (int, float)):
            try:
                upgraded["createdAt"] = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as exc:
                raise ValueError(f"timestamp out of range: {timestamp!r}") from exc
        else:
            upgraded["createdAt"] = timestamp
        return upgraded
