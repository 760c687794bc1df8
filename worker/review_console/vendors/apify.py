"""Client utilities for the Apify REST API (actor runs and datasets)."""

import logging
from typing import Any, Dict, List, Optional

import requests

from review_console.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.apify.com/v2"


def actor_path(actor_id: str) -> str:
    """Apify addresses ``user/actor`` as ``user~actor`` in URL paths."""
    return actor_id.strip().replace("/", "~")


class ApifyClient:
    """Thin wrapper over the three Apify endpoints a scrape run needs.

    The token is injected at construction and sent as a Bearer header so it
    never ends up in logged URLs.
    """

    def __init__(
        self,
        token: str,
        base_url: str = _BASE_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or _SESSION

    def start_run(
        self, actor_id: str, payload: Dict[str, Any], wait_seconds: Optional[int] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if wait_seconds:
            params["waitForFinish"] = int(wait_seconds)
        # The HTTP timeout has to outlast the server-side wait.
        timeout = self._timeout + (wait_seconds or 0)
        body = self._request(
            "POST",
            f"/acts/{actor_path(actor_id)}/runs",
            params=params,
            json=payload,
            timeout=timeout,
        )
        run = _run_object(body)
        logger.info("Started actor %s run=%s status=%s", actor_id, run.get("id"), run.get("status"))
        return run

    def get_run(self, run_id: str) -> Dict[str, Any]:
        body = self._request("GET", f"/actor-runs/{run_id}")
        return _run_object(body)

    def dataset_items(self, dataset_id: str, limit: Optional[int] = None) -> List[Any]:
        params: Dict[str, Any] = {"clean": "true", "format": "json"}
        if limit:
            params["limit"] = int(limit)
        items = self._request("GET", f"/datasets/{dataset_id}/items", params=params)
        if not isinstance(items, list):
            logger.error("dataset_items for %s returned %s instead of a list", dataset_id, type(items).__name__)
            raise UpstreamUnavailable(
                "Dataset items response was not an array.", details={"datasetId": dataset_id}
            )
        logger.info("Fetched %d dataset items from %s", len(items), dataset_id)
        return items

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            response = self._session.request(
                method, url, headers=headers, timeout=timeout or self._timeout, **kwargs
            )
        except requests.RequestException as exc:
            logger.error("Apify %s %s failed: %s", method, path, exc)
            raise UpstreamUnavailable("Apify request failed", details=str(exc)) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None
            parsed = False
        else:
            parsed = True

        if not (200 <= response.status_code < 300):
            message = _error_message(payload) or _preview(response.text) or f"Request failed ({response.status_code})"
            logger.error("Apify %s %s returned %s: %s", method, path, response.status_code, message)
            raise UpstreamUnavailable(message, details={"status_code": response.status_code})

        if not parsed:
            logger.error("Apify %s %s returned non-JSON: %s", method, path, _preview(response.text))
            raise UpstreamUnavailable(
                "Unexpected non-JSON response from upstream.", details={"preview": _preview(response.text)}
            )
        return payload


def _run_object(body: Any) -> Dict[str, Any]:
    run = body.get("data") if isinstance(body, dict) else None
    if not isinstance(run, dict) or not run.get("id"):
        raise UpstreamUnavailable("Apify: run id missing.")
    return run


def _error_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("type")
    if isinstance(error, str):
        return error
    return payload.get("message")


def _preview(text: Optional[str], limit: int = 200) -> str:
    return " ".join((text or "").split())[:limit]
