"""Start Apify actor runs, follow them to completion and hand back raw records."""

from __future__ import annotations

import dataclasses
import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from review_console.core.config import Settings
from review_console.core.errors import (
    ConfigurationError,
    InvalidRequest,
    RunTimedOut,
    UpstreamRunFailed,
    UpstreamUnavailable,
)
from review_console.core.models import (
    ResultRow,
    RunHandle,
    RunStatus,
    SearchRequest,
    StubResult,
    SyncResult,
    clamp,
)
from review_console.etl.normalize import NormalizeOptions, normalize, parse_date
from review_console.vendors.apify import ApifyClient

logger = logging.getLogger(__name__)

StartResult = Union[SyncResult, RunHandle, StubResult]
PollResult = Union[RunHandle, List[Any]]


class ScrapeRunner:
    """Drives one scrape from request to raw records.

    ``sync`` mode blocks inside ``start_run`` until the run finishes; ``async``
    mode hands the caller a ``RunHandle`` to feed into ``poll_run``.
    """

    def __init__(self, settings: Settings, client: Optional[ApifyClient] = None) -> None:
        self.settings = settings
        self.client = client or ApifyClient(
            settings.apify_token,
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    def build_actor_input(self, req: SearchRequest, today: Optional[date] = None) -> Dict[str, Any]:
        settings = self.settings
        max_results = clamp(int(req.max_result_count), 1, settings.max_results_limit)
        max_reviews = clamp(int(req.max_sub_item_count), 0, settings.max_reviews_limit)

        payload: Dict[str, Any] = {
            "searchStringsArray": [req.query.strip()],
            "locationQuery": settings.location_query,
            "language": settings.language,
            "maxCrawledPlacesPerSearch": max_results,
            "maxReviews": max_reviews,
            "reviewsSort": "newest",
            "maxImages": 0,
            "scrapeReviewsPersonalData": max_reviews > 0,
        }
        if not settings.location_query:
            payload.pop("locationQuery")
        max_age_days = clamp(int(req.max_age_days), 0, settings.max_age_days_limit)
        if max_reviews and max_age_days > 0:
            start = review_cutoff(today or datetime.now(timezone.utc).date(), max_age_days)
            if start is not None:
                payload["reviewsStartDate"] = start.isoformat()
        return payload

    def start_run(self, req: SearchRequest) -> StartResult:
        if not req.query.strip():
            raise InvalidRequest("Missing q")
        if not req.is_supported:
            logger.info("Source %s is not wired; returning stub row", req.source)
            return StubResult.not_wired(req.source)
        self._require_token()

        payload = self.build_actor_input(req)
        if self.settings.run_mode == "sync":
            run = self.client.start_run(
                self.settings.actor_id, payload, wait_seconds=self.settings.sync_wait_seconds
            )
            handle = self._observe(RunHandle(run_id=run["id"]), run)
            records = self.await_run(handle, limit=req.max_result_count)
            return SyncResult(run_id=handle.run_id, records=records)

        run = self.client.start_run(self.settings.actor_id, payload)
        handle = self._observe(RunHandle(run_id=run["id"]), run)
        if handle.started_at is None:
            # Callers echo this back on polls so the budget holds without the vendor's startedAt.
            handle = dataclasses.replace(handle, started_at=datetime.now(timezone.utc))
        return handle

    def poll_run(self, handle: RunHandle, limit: Optional[int] = None) -> PollResult:
        """Check a run once; return the updated handle or, once done, its records."""
        self._require_token()
        run = self.client.get_run(handle.run_id)
        handle = self._observe(handle, run)
        return self._resolve(handle, limit, deadline=None)

    def await_run(self, handle: RunHandle, limit: Optional[int] = None) -> List[Any]:
        """Poll at a fixed interval until the run ends or the budget runs out."""
        deadline = time.monotonic() + self.settings.poll_timeout_seconds
        while True:
            result = self._resolve(handle, limit, deadline=deadline)
            if not isinstance(result, RunHandle):
                return result
            handle = result
            time.sleep(self.settings.poll_interval_seconds)
            run = self.client.get_run(handle.run_id)
            handle = self._observe(handle, run)

    def run_search(self, req: SearchRequest) -> List[ResultRow]:
        """Start, wait and normalize in one call regardless of the run mode."""
        started = self.start_run(req)
        if isinstance(started, StubResult):
            return list(started.rows)
        if isinstance(started, RunHandle):
            records = self.await_run(started, limit=req.max_result_count)
        else:
            records = started.records
        return normalize(records, options_for(req), source=req.source)

    def _resolve(self, handle: RunHandle, limit: Optional[int], deadline: Optional[float]) -> PollResult:
        if handle.status is RunStatus.SUCCEEDED:
            if not handle.dataset_id:
                raise UpstreamUnavailable(
                    "Could not find datasetId from Apify run.", details={"runId": handle.run_id}
                )
            return self.client.dataset_items(handle.dataset_id, limit=limit)
        if handle.status is RunStatus.FAILED:
            message = f"Apify run {handle.vendor_status or handle.status.value}"
            if handle.status_message:
                message = f"{message}: {handle.status_message}"
            raise UpstreamRunFailed(
                message,
                details={
                    "runId": handle.run_id,
                    "status": handle.vendor_status,
                    "statusMessage": handle.status_message,
                },
            )
        if self._budget_exceeded(handle, deadline):
            timed_out = handle.advance(RunStatus.TIMED_OUT)
            logger.warning("Run %s exceeded the %ss poll budget", timed_out.run_id, self.settings.poll_timeout_seconds)
            raise RunTimedOut(
                "Still running after the poll budget. Try fewer places or reviews.",
                details={"runId": timed_out.run_id, "timeoutSeconds": self.settings.poll_timeout_seconds},
            )
        return handle

    def _budget_exceeded(self, handle: RunHandle, deadline: Optional[float]) -> bool:
        if deadline is not None:
            return time.monotonic() >= deadline
        if handle.started_at is None:
            logger.warning("Run %s has no known start time; poll budget not enforced", handle.run_id)
            return False
        elapsed = (datetime.now(timezone.utc) - handle.started_at).total_seconds()
        return elapsed > self.settings.poll_timeout_seconds

    def _observe(self, handle: RunHandle, run: Dict[str, Any]) -> RunHandle:
        status = RunStatus.from_vendor(run.get("status"))
        updated = handle.advance(
            status,
            dataset_id=run.get("defaultDatasetId") or handle.dataset_id,
            started_at=parse_date(run.get("startedAt")) or handle.started_at,
            vendor_status=run.get("status"),
            status_message=run.get("statusMessage"),
        )
        if updated.status is not handle.status:
            logger.info("Run %s: %s -> %s", handle.run_id, handle.status.value, updated.status.value)
        return updated

    def _require_token(self) -> None:
        if not self.settings.apify_token:
            raise ConfigurationError("Missing APIFY_TOKEN")


def review_cutoff(today: date, max_age_days: int) -> Optional[date]:
    """Oldest review date to ask the actor for, or ``None`` when unbounded."""
    try:
        return today - timedelta(days=max_age_days)
    except OverflowError:
        return None


def options_for(req: SearchRequest) -> NormalizeOptions:
    return NormalizeOptions(
        max_sub_item_count=req.max_sub_item_count,
        min_rating=req.min_rating,
        max_age_days=req.max_age_days,
    )
