"""HTTP entrypoint that starts Apify scrape runs and serves normalized rows."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from review_console.core.config import get_settings
from review_console.core.errors import ConsoleError, InvalidRequest
from review_console.core.models import (
    KNOWN_SOURCES,
    SUPPORTED_SOURCE,
    RunHandle,
    SearchRequest,
    StubResult,
    SyncResult,
)
from review_console.core.runs import ScrapeRunner, options_for
from review_console.etl.normalize import normalize, parse_date

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)

SMOKE_PARAMS = {"q": "finance company Dublin", "source": "google-maps", "maxPlaces": 1, "maxReviews": 0}


def get_runner() -> ScrapeRunner:
    return ScrapeRunner(get_settings())


def _request_params() -> Dict[str, Any]:
    """Merge query-string arguments with a JSON body; body keys win."""
    params: Dict[str, Any] = request.args.to_dict()
    if request.method == "POST":
        body = request.get_json(silent=True)
        if body is not None and not isinstance(body, dict):
            raise InvalidRequest("JSON body must be an object")
        params.update(body or {})
    return params


def _rows_payload(rows) -> list:
    return [row.to_dict() for row in rows]


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "run_mode": settings.run_mode,
                "actor_id": settings.actor_id,
                "supported_source": SUPPORTED_SOURCE,
                "known_sources": list(KNOWN_SOURCES),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.route("/api/run", methods=["GET", "POST"])
def start_search() -> Any:
    """
    Start a scrape for ``q``/``source``; re-calling with ``runId`` polls instead.
    Optional: maxPlaces, maxReviews, minRating, days.
    """
    params = _request_params()
    if params.get("runId"):
        return _poll(params)

    settings = get_settings()
    search = SearchRequest.from_mapping(params, settings)
    logger.info("Starting search: %s", search)

    started = get_runner().start_run(search)
    if isinstance(started, StubResult):
        return jsonify({"status": "SUCCEEDED", "items": _rows_payload(started.rows)}), 200
    if isinstance(started, SyncResult):
        rows = normalize(started.records, options_for(search), source=search.source)
        logger.info("Run %s produced %d rows", started.run_id, len(rows))
        return jsonify({"status": "SUCCEEDED", "runId": started.run_id, "items": _rows_payload(rows)}), 200

    return jsonify({"status": "RUNNING", "runId": started.run_id, "startedAt": _iso(started.started_at)}), 202


@app.route("/api/results", methods=["GET", "POST"])
def poll_results() -> Any:
    return _poll(_request_params())


@app.get("/api/smoke")
def smoke() -> Any:
    """Run a tiny fixed query to completion to check credentials and the actor."""
    search = SearchRequest.from_mapping(SMOKE_PARAMS, get_settings())
    rows = get_runner().run_search(search)
    return jsonify({"status": "SUCCEEDED", "count": len(rows), "items": _rows_payload(rows)}), 200


# ---------- Errors ----------


@app.errorhandler(ConsoleError)
def handle_console_error(exc: ConsoleError) -> Any:
    logger.warning("%s: %s", type(exc).__name__, exc.message)
    return jsonify(exc.to_payload()), exc.http_status


@app.errorhandler(HTTPException)
def handle_http_error(exc: HTTPException) -> Any:
    return jsonify({"error": exc.name, "details": exc.description}), exc.code or 500


@app.errorhandler(Exception)
def handle_unexpected(exc: Exception) -> Any:
    logger.exception("Unhandled error: %s", exc)
    return jsonify({"error": "internal error", "details": type(exc).__name__}), 500


# ---------- Internals ----------


def _poll(params: Dict[str, Any]) -> Any:
    run_id = str(params.get("runId") or "").strip()
    if not run_id:
        raise InvalidRequest("Missing runId")

    # Poll calls may omit q/source; only the filters and the place limit matter here.
    merged = dict(params)
    merged["q"] = merged.get("q") or run_id
    merged["source"] = merged.get("source") or SUPPORTED_SOURCE
    search = SearchRequest.from_mapping(merged, get_settings())
    limit = search.max_result_count if _has_any(params, "maxPlaces", "maxResultCount") else None

    # The vendor's startedAt wins; the value echoed from the start response covers runs without one.
    handle = RunHandle(run_id=run_id, started_at=parse_date(params.get("startedAt")))
    result = get_runner().poll_run(handle, limit=limit)
    if isinstance(result, RunHandle):
        return (
            jsonify({"status": result.status.value, "runId": result.run_id, "startedAt": _iso(result.started_at)}),
            200,
        )

    rows = normalize(result, options_for(search), source=search.source)
    logger.info("Run %s produced %d rows", run_id, len(rows))
    return jsonify({"status": "SUCCEEDED", "runId": run_id, "items": _rows_payload(rows)}), 200


def _iso(value) -> Any:
    return value.isoformat() if value is not None else None


def _has_any(params: Dict[str, Any], *names: str) -> bool:
    return any(params.get(name) not in (None, "") for name in names)


def main() -> None:
    settings = get_settings()
    port = int(os.getenv("PORT") or settings.server_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d run_mode=%s", port, settings.run_mode)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
