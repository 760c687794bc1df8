"""Core data models shared by the run lifecycle, the normalizer and the HTTP layer."""

from __future__ import annotations

import dataclasses
import enum
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from review_console.core.config import Settings
from review_console.core.errors import InvalidRequest, UpstreamUnavailable

logger = logging.getLogger(__name__)

SUPPORTED_SOURCE = "google-maps"
KNOWN_SOURCES = ("google-maps", "reddit", "trustpilot", "quora", "google-trends")

ROW_KINDS = ("business", "review", "other")


class RunStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @classmethod
    def from_vendor(cls, value: Any) -> "RunStatus":
        """Map an Apify run status onto the local lifecycle."""
        key = str(value or "").strip().upper()
        try:
            return _VENDOR_STATUS[key]
        except KeyError:
            raise UpstreamUnavailable(
                "Unrecognised run status from upstream", details={"status": value}
            ) from None


_TERMINAL = frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.TIMED_OUT})

# Vendor-side TIMED-OUT is a failed run; TIMED_OUT is reserved for the local poll budget.
_VENDOR_STATUS = {
    "READY": RunStatus.PENDING,
    "PENDING": RunStatus.PENDING,
    "RUNNING": RunStatus.RUNNING,
    "TIMING-OUT": RunStatus.RUNNING,
    "ABORTING": RunStatus.RUNNING,
    "SUCCEEDED": RunStatus.SUCCEEDED,
    "FAILED": RunStatus.FAILED,
    "ABORTED": RunStatus.FAILED,
    "TIMED-OUT": RunStatus.FAILED,
}

_TRANSITIONS = {
    RunStatus.PENDING: frozenset(RunStatus),
    RunStatus.RUNNING: frozenset(
        {RunStatus.RUNNING, RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.TIMED_OUT}
    ),
    RunStatus.SUCCEEDED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.TIMED_OUT: frozenset(),
}


@dataclass(frozen=True)
class RunHandle:
    """Observed state of one vendor run. Status only changes through ``advance``."""

    run_id: str
    status: RunStatus = RunStatus.PENDING
    dataset_id: Optional[str] = None
    started_at: Optional[datetime] = None
    vendor_status: Optional[str] = None
    status_message: Optional[str] = None

    def can_advance_to(self, status: RunStatus) -> bool:
        return status in _TRANSITIONS[self.status]

    def advance(self, status: RunStatus, **changes: Any) -> "RunHandle":
        if self.status.is_terminal:
            raise ValueError(f"run {self.run_id} is already {self.status.value}")
        if not self.can_advance_to(status):
            logger.warning(
                "Ignoring backwards status %s -> %s for run %s",
                self.status.value,
                status.value,
                self.run_id,
            )
            status = self.status
        return dataclasses.replace(self, status=status, **changes)


@dataclass(frozen=True)
class SearchRequest:
    query: str
    source: str = SUPPORTED_SOURCE
    max_result_count: int = 8
    max_sub_item_count: int = 20
    min_rating: Optional[float] = None
    max_age_days: int = 0

    @property
    def is_supported(self) -> bool:
        return self.source == SUPPORTED_SOURCE

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any], settings: Settings) -> "SearchRequest":
        """Build a request from query-string or JSON body keys.

        Counts are clamped to the configured bounds rather than rejected; only
        a blank query, a missing source or non-numeric values are errors.
        """
        query = str(_first(params, "q", "query") or "").strip()
        if not query:
            raise InvalidRequest("Missing q")

        source = str(_first(params, "source") or "").strip().lower()
        if not source:
            raise InvalidRequest("Missing source")

        max_results = _parse_int(params, ("maxPlaces", "maxResultCount", "max_results"), "maxPlaces")
        max_reviews = _parse_int(params, ("maxReviews", "maxSubItemCount", "max_reviews"), "maxReviews")
        min_rating = _parse_float(params, ("minRating", "min_rating"), "minRating")
        max_age = _parse_int(params, ("days", "maxAgeDays", "max_age_days"), "days")

        if max_results is None:
            max_results = settings.default_max_results
        if max_reviews is None:
            max_reviews = settings.default_max_reviews
        if min_rating is not None:
            min_rating = clamp(min_rating, 0.0, 5.0)

        return cls(
            query=query,
            source=source,
            max_result_count=clamp(max_results, 1, settings.max_results_limit),
            max_sub_item_count=clamp(max_reviews, 0, settings.max_reviews_limit),
            min_rating=min_rating,
            max_age_days=clamp(max_age or 0, 0, settings.max_age_days_limit),
        )


@dataclass(slots=True)
class ResultRow:
    """One normalized table row."""

    title: str
    kind: str = "other"
    source: str = SUPPORTED_SOURCE
    snippet: str = ""
    url: str = ""
    rating: Optional[float] = None
    date: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in ROW_KINDS:
            raise ValueError(f"row kind must be one of {ROW_KINDS}, got {self.kind!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "kind": self.kind,
            "source": self.source,
            "snippet": self.snippet,
            "url": self.url,
            "rating": self.rating,
            "date": self.date,
        }


@dataclass(frozen=True)
class SyncResult:
    run_id: str
    records: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class StubResult:
    """Placeholder answer for sources that are not wired to an actor yet."""

    source: str
    rows: List[ResultRow] = field(default_factory=list)

    @classmethod
    def not_wired(cls, source: str) -> "StubResult":
        row = ResultRow(
            title=f'Source "{source}" not wired yet',
            kind="other",
            source=source,
            snippet=(
                "The console is working. Next step is connecting this source to an "
                "Apify actor and mapping its fields into the standard row format."
            ),
        )
        return cls(source=source, rows=[row])


def clamp(value, lower, upper):
    return max(lower, min(upper, value))


def _first(params: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = params.get(name)
        if value is not None and value != "":
            return value
    return None


def _parse_int(params: Mapping[str, Any], names, label: str) -> Optional[int]:
    raw = _first(params, *names)
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidRequest(f"{label} must be numeric")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidRequest(f"{label} must be numeric", details={label: raw}) from None
    if math.isnan(value):
        raise InvalidRequest(f"{label} must be numeric", details={label: raw})
    if math.isinf(value):
        return 10**9 if value > 0 else -(10**9)
    return int(value)


def _parse_float(params: Mapping[str, Any], names, label: str) -> Optional[float]:
    raw = _first(params, *names)
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidRequest(f"{label} must be numeric")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidRequest(f"{label} must be numeric", details={label: raw}) from None
    if math.isnan(value):
        raise InvalidRequest(f"{label} must be numeric", details={label: raw})
    return value
