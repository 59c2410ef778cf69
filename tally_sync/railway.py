"""
Client for the Railway-hosted Tally proxy.

The proxy mirrors Tally data and serves it as JSON, paged with
limit/offset per table.
"""
from __future__ import annotations
from typing import Any, Iterator, Optional
import requests
from loguru import logger

from .config import SyncConfig
from .errors import RailwayError, RetryableHTTPError
from .retry import RetryPolicy, is_retryable_status


def extract_records(body: Any, table: str = "") -> list[dict]:
    """
    Pull the record list out of a proxy response.

    Accepts ``{"data": [...]}``, ``{"records": [...]}``,
    ``{"data": {"records": [...]}}`` or a bare list.
    """
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list):
            return data
        if isinstance(body.get("records"), list):
            return body["records"]
        if isinstance(data, dict) and isinstance(data.get("records"), list):
            return data["records"]
        logger.warning(
            f"Unexpected response format for {table}: keys={list(body.keys())}, "
            f"preview={str(body)[:200]}"
        )
    else:
        logger.warning(f"Unexpected response type for {table}: {type(body).__name__}")
    return []


class RailwayClient:
    """
    HTTP client for the Railway proxy.

    Usage:
        client = RailwayClient(config)
        for page in client.iter_batches("ledgers", batch_size=1000):
            ...
    """

    def __init__(self, config: Optional[SyncConfig] = None, retry_policy: Optional[RetryPolicy] = None):
        self.config = config or SyncConfig.from_env()
        self.base_url = self.config.railway_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.session = requests.Session()
        self.session.headers["Content-Type"] = "application/json"
        if self.config.railway_api_key:
            self.session.headers["Authorization"] = f"Bearer {self.config.railway_api_key}"

    def health(self) -> dict:
        """GET /api/v1/health."""
        return self._call("GET", f"{self.base_url}/api/v1/health", description="Railway health")

    def query(
        self,
        table: str,
        limit: int = 1000,
        offset: int = 0,
        filters: Optional[dict] = None,
    ) -> list[dict]:
        """Fetch one page of ``table`` for the configured tenant."""
        url = f"{self.base_url}/api/v1/query/{self.config.company_id}/{self.config.division_id}"
        payload = {"table": table, "filters": filters or {}, "limit": limit, "offset": offset}
        logger.debug(f"Querying {table} from {url} (limit: {limit}, offset: {offset})")

        body = self._call("POST", url, json=payload, description=f"Railway query {table}")
        if isinstance(body, dict) and body.get("success") is False:
            raise RailwayError(body.get("error") or f"Railway query for {table} failed")

        records = extract_records(body, table)
        logger.debug(f"Retrieved {len(records)} records for {table}")
        return records

    def iter_batches(self, table: str, batch_size: int = 1000) -> Iterator[list[dict]]:
        """Yield pages of ``table`` until a short or empty page."""
        offset = 0
        while True:
            records = self.query(table, limit=batch_size, offset=offset)
            if not records:
                break
            yield records
            offset += len(records)
            if len(records) < batch_size:
                break

    def _call(self, method: str, url: str, description: str, **kwargs) -> Any:
        """
        Send a request with retries and decode its JSON body.

        Raises:
            RailwayError: attempts exhausted, request rejected or body not JSON
        """
        try:
            r = self.retry_policy.run(self._request, method, url, description=description, **kwargs)
        except (RetryableHTTPError, requests.RequestException) as e:
            if isinstance(e, self.retry_policy.retry_on):
                raise RailwayError(
                    f"{description} failed after {self.retry_policy.attempts} attempts: {e}"
                ) from e
            raise RailwayError(f"{description} failed: {e}") from e
        try:
            return r.json()
        except ValueError as e:
            raise RailwayError(f"{description} returned invalid JSON: {r.text[:200]}") from e

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        r = self.session.request(method, url, timeout=self.config.request_timeout, **kwargs)
        if is_retryable_status(r.status_code):
            raise RetryableHTTPError(r.status_code, r.text)
        if r.status_code >= 400:
            raise RailwayError(f"HTTP {r.status_code}: {r.text[:200]}")
        return r

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
