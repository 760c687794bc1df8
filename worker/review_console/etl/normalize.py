"""Utilities for turning raw Apify dataset items into table rows."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import quote

from review_console.core.models import SUPPORTED_SOURCE, ResultRow

logger = logging.getLogger(__name__)

SNIPPET_SEPARATOR = " • "
PLACE_URL_TEMPLATE = "https://www.google.com/maps/search/?api=1&query=Google&query_place_id={place_id}"


@dataclass(frozen=True)
class FieldAliases:
    """Ordered vendor field names per semantic field; the first non-empty one wins."""

    title: Sequence[str] = ("title", "name")
    url: Sequence[str] = ("url", "googleUrl", "placeUrl", "mapsUrl", "website")
    rating: Sequence[str] = ("totalScore", "rating", "score")
    place_id: Sequence[str] = ("placeId", "place_id")
    snippet: Sequence[str] = ("address", "phone", "website", "categoryName")
    date: Sequence[str] = ()
    reviews: Sequence[str] = ("reviews", "reviewsList")
    review_text: Sequence[str] = ("text", "textTranslated", "reviewText", "snippet")
    review_author: Sequence[str] = ("name", "reviewerName", "author")
    review_rating: Sequence[str] = ("stars", "rating", "score")
    review_date: Sequence[str] = ("publishedAtDate", "publishAt", "date", "reviewDate")
    review_url: Sequence[str] = ("reviewUrl", "url")


DEFAULT_ALIASES = FieldAliases()


@dataclass(frozen=True)
class NormalizeOptions:
    max_sub_item_count: int = 20
    min_rating: Optional[float] = None
    max_age_days: int = 0


def normalize(
    records: Iterable[Any],
    options: NormalizeOptions,
    *,
    source: str = SUPPORTED_SOURCE,
    aliases: FieldAliases = DEFAULT_ALIASES,
    now: Optional[datetime] = None,
) -> List[ResultRow]:
    """Map raw records to rows: one listing row each, then its surviving reviews.

    Source order is kept. A record that cannot be parsed still yields a
    fallback row instead of being dropped.
    """
    reference = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)

    rows: List[ResultRow] = []
    for index, record in enumerate(records):
        try:
            rows.extend(_normalize_record(record, options, source, aliases, reference))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Falling back for record %d: %s", index, exc)
            rows.append(fallback_row(record, source))
    return rows


def fallback_row(record: Any, source: str = SUPPORTED_SOURCE) -> ResultRow:
    title = "Unknown"
    if isinstance(record, dict):
        title = first_text(record, DEFAULT_ALIASES.title) or title
    return ResultRow(title=title, kind="other", source=source, snippet=_preview(record))


def _normalize_record(
    record: Any,
    options: NormalizeOptions,
    source: str,
    aliases: FieldAliases,
    reference: datetime,
) -> List[ResultRow]:
    if not isinstance(record, dict):
        return [fallback_row(record, source)]

    listing = to_listing_row(record, source, aliases)
    rows = [listing]

    limit = max(options.max_sub_item_count, 0)
    if not limit:
        return rows

    for review in _iter_reviews(record, aliases):
        if len(rows) - 1 >= limit:
            break
        if not isinstance(review, dict):
            logger.warning("Review entry for %s is %s, keeping it as raw text", listing.title, type(review).__name__)
            rows.append(
                ResultRow(title=listing.title, kind="review", source=source, snippet=_preview(review), url=listing.url)
            )
            continue
        row = to_review_row(review, listing, source, aliases)
        if not passes_rating(row.rating, options.min_rating):
            continue
        if not passes_age(first_value(review, aliases.review_date), options.max_age_days, reference):
            continue
        rows.append(row)
    return rows


def to_listing_row(record: Dict[str, Any], source: str, aliases: FieldAliases = DEFAULT_ALIASES) -> ResultRow:
    url = first_text(record, aliases.url)
    if not url:
        place_id = first_text(record, aliases.place_id)
        if place_id:
            url = PLACE_URL_TEMPLATE.format(place_id=quote(place_id, safe=""))

    parts = [text for text in (_text(record.get(name)) for name in aliases.snippet) if text]
    return ResultRow(
        title=first_text(record, aliases.title) or "Unknown",
        kind="business",
        source=source,
        snippet=SNIPPET_SEPARATOR.join(parts),
        url=url or "",
        rating=safe_float(first_value(record, aliases.rating)),
        date=to_iso(first_value(record, aliases.date)),
    )


def to_review_row(
    review: Dict[str, Any],
    listing: ResultRow,
    source: str,
    aliases: FieldAliases = DEFAULT_ALIASES,
) -> ResultRow:
    author = first_text(review, aliases.review_author)
    title = f"{listing.title}{SNIPPET_SEPARATOR}{author}" if author else listing.title
    return ResultRow(
        title=title,
        kind="review",
        source=source,
        snippet=first_text(review, aliases.review_text) or "",
        url=first_text(review, aliases.review_url) or listing.url,
        rating=safe_float(first_value(review, aliases.review_rating)),
        date=to_iso(first_value(review, aliases.review_date)),
    )


def passes_rating(rating: Optional[float], min_rating: Optional[float]) -> bool:
    if rating is None or min_rating is None:
        return True
    return rating >= min_rating


def passes_age(raw_date: Any, max_age_days: int, reference: datetime) -> bool:
    if not max_age_days or max_age_days <= 0:
        return True
    parsed = parse_date(raw_date)
    if parsed is None:
        return True
    try:
        cutoff = reference - timedelta(days=max_age_days)
    except OverflowError:
        # Window reaches past datetime.min: unbounded.
        return True
    return parsed >= cutoff


def _iter_reviews(record: Dict[str, Any], aliases: FieldAliases) -> List[Any]:
    for name in aliases.reviews:
        value = record.get(name)
        if isinstance(value, list):
            return value
    return []


def first_value(record: Dict[str, Any], names: Sequence[str]) -> Any:
    for name in names:
        value = record.get(name)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def first_text(record: Dict[str, Any], names: Sequence[str]) -> Optional[str]:
    for name in names:
        text = _text(record.get(name))
        if text:
            return text
    return None


def safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_date(value: Any) -> Optional[datetime]:
    """Best-effort date parsing. Anything unrecognised is ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        seconds = value / 1000.0 if abs(value) >= 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: Any) -> Optional[str]:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _preview(value: Any, limit: int = 200) -> str:
    return " ".join(str(value).split())[:limit]
