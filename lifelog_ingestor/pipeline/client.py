"""Limitless API client: paginated lifelog fetches with bounded timeouts."""
from typing import Any

import httpx
from pydantic import ValidationError

from lifelog_ingestor.utils.config import Settings, settings as default_settings
from lifelog_ingestor.utils.errors import FetchError
from lifelog_ingestor.utils.logger import log_anomaly, logger, measure_latency
from lifelog_ingestor.utils.schemas import IngestionWindow, LifelogEntry


class MalformedResponse(Exception):
    """Upstream answered 2xx with a body we cannot interpret."""


class LimitlessClient:
    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.limitless.ai",
        timeout: float = 30.0,
        page_size: int = 10,
        max_pages: int = 100,
        transport: httpx.BaseTransport | None = None,
    ):
        self.page_size = page_size
        self.max_pages = max_pages
        self._http = httpx.Client(
            base_url=base_url,
            headers={"X-API-Key": api_key or "", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LimitlessClient":
        settings = settings or default_settings
        if not settings.limitless_api_key:
            logger.warning("limitless_api_key_missing")
        return cls(
            api_key=settings.limitless_api_key,
            base_url=settings.limitless_api_base_url,
            timeout=settings.limitless_timeout_seconds,
            page_size=settings.limitless_page_size,
            max_pages=settings.limitless_max_pages,
        )

    def close(self) -> None:
        self._http.close()

    def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            response = self._http.get(path, params=params)
        except httpx.TimeoutException as e:
            raise FetchError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {path} failed: {e}") from e
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
            detail = body.get("message") if isinstance(body, dict) else None
        except ValueError:
            detail = None
        detail = detail or response.text[:200]
        logger.error("limitless_api_error", status_code=response.status_code, detail=detail)
        raise FetchError(f"API error ({response.status_code}): {detail}", status_code=response.status_code)

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponse("body is not JSON") from e
        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise MalformedResponse("missing data object")
        return body

    def _fetch_page(self, params: dict[str, Any]) -> tuple[list[LifelogEntry], str | None]:
        response = self._get("/v1/lifelogs", params=params)
        self._raise_for_status(response)
        body = self._json(response)
        lifelogs = body["data"].get("lifelogs")
        if not isinstance(lifelogs, list):
            raise MalformedResponse("data.lifelogs is not a list")
        try:
            entries = [LifelogEntry.from_payload(item) for item in lifelogs]
        except (ValidationError, TypeError) as e:
            raise MalformedResponse(f"invalid lifelog: {e}") from e
        meta = body.get("meta") or {}
        next_cursor = (meta.get("lifelogs") or {}).get("nextCursor") if isinstance(meta, dict) else None
        return entries, next_cursor or None

    def fetch_batch(self, window: IngestionWindow) -> list[LifelogEntry]:
        """Fetch every lifelog in `window`, following cursors.

        A failed page raises FetchError even when earlier pages succeeded, and
        so does hitting `max_pages` while a cursor is still pending.
        A malformed page discards the whole batch with a warning.
        """
        params: dict[str, Any] = {**window.to_params(), "limit": self.page_size}
        logger.info("fetching_lifelogs", **window.to_params())
        entries: list[LifelogEntry] = []
        pages = 0
        with measure_latency("limitless_fetch_batch", **window.to_params()):
            try:
                while True:
                    page, cursor = self._fetch_page(params)
                    entries.extend(page)
                    pages += 1
                    if not cursor:
                        break
                    if pages >= self.max_pages:
                        log_anomaly("page_limit_reached", f"Stopped after {pages} pages", cursor=cursor)
                        raise FetchError(f"Page limit of {self.max_pages} reached with more lifelogs pending")
                    params = {**params, "cursor": cursor}
            except MalformedResponse as e:
                log_anomaly("unexpected_response_format", str(e), page=pages + 1)
                return []
        logger.info("fetched_lifelogs", count=len(entries), pages=pages)
        return entries

    def fetch_by_id(self, lifelog_id: str) -> LifelogEntry | None:
        logger.info("fetching_lifelog", lifelog_id=lifelog_id)
        response = self._get(f"/v1/lifelogs/{lifelog_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        try:
            payload = self._json(response)["data"].get("lifelog")
            if not isinstance(payload, dict):
                raise MalformedResponse("data.lifelog is not an object")
            return LifelogEntry.from_payload(payload)
        except (MalformedResponse, ValidationError) as e:
            log_anomaly("unexpected_response_format", str(e), lifelog_id=lifelog_id)
            return None
