"""
Client for the Supabase Edge Functions that accept Tally data.

- tally-bulk-import: chunked replace/upsert/append per table
- tally-data-ingestion: single-table insert/update/upsert/delete
- tally-xml-parser: server-side parsing of raw Tally XML
"""
from __future__ import annotations
from typing import Optional
import requests
from loguru import logger
from pydantic import BaseModel

from .config import SyncConfig
from .errors import BulkImportError, RetryableHTTPError, TallySyncError
from .retry import RetryPolicy, is_retryable_status
from .sync_types import BulkImportRequest, IngestRequest, TablePayload, TableResult

BULK_IMPORT = "tally-bulk-import"
DATA_INGESTION = "tally-data-ingestion"
XML_PARSER = "tally-xml-parser"


class EdgeFunctionClient:
    """
    Calls Supabase Edge Functions with the tenant and API key in the body.

    Network errors, 429 and 5xx are retried with linear backoff; any other
    HTTP error fails at once.
    """

    def __init__(self, config: Optional[SyncConfig] = None, retry_policy: Optional[RetryPolicy] = None):
        self.config = config or SyncConfig.from_env()
        self.base_url = self.config.functions_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.session = requests.Session()
        self.session.headers["Content-Type"] = "application/json"

    def bulk_import(
        self,
        table: str,
        operation: str,
        rows: list[dict],
        import_type: str = "full_sync",
    ) -> TableResult:
        """
        Send one chunk of ``rows`` for ``table`` to tally-bulk-import.

        Raises:
            BulkImportError: attempts exhausted or the function rejected the chunk
        """
        payload = BulkImportRequest(
            api_key=self.config.api_key or "",
            company_id=self.config.company_id,
            division_id=self.config.division_id,
            import_type=import_type,
            tables=[TablePayload(table_name=table, operation=operation, data=rows)],
        )
        try:
            body = self.retry_policy.run(
                self._post, BULK_IMPORT, payload, description=f"bulk import of {table}"
            )
        except (TallySyncError, requests.RequestException) as e:
            if isinstance(e, self.retry_policy.retry_on):
                message = f"Failed to import {table} after {self.retry_policy.attempts} attempts: {e}"
            else:
                message = f"Bulk import of {table} failed: {e}"
            raise BulkImportError(table, message) from e

        for result in body.get("table_results") or body.get("results") or []:
            if result.get("table_name") == table:
                return TableResult.model_validate(result)
        return TableResult(table_name=table, processed_count=len(rows))

    def ingest(
        self,
        table: str,
        operation: str,
        rows: list[dict],
        data_type: str = "master",
    ) -> dict:
        """Send rows to tally-data-ingestion."""
        payload = IngestRequest(
            api_key=self.config.api_key or "",
            data_type=data_type,
            table_name=table,
            operation=operation,
            company_id=self.config.company_id,
            division_id=self.config.division_id,
            data=rows,
        )
        return self.retry_policy.run(
            self._post, DATA_INGESTION, payload, description=f"ingestion of {table}"
        )

    def parse_xml(self, xml_text: str) -> dict:
        """Hand raw Tally XML to tally-xml-parser and return its JSON."""
        return self.retry_policy.run(
            self._post_raw,
            XML_PARSER,
            {"xmlData": xml_text, **self.config.tenant},
            description="XML parse",
        )

    def _post(self, function: str, payload: BaseModel) -> dict:
        return self._send(function, payload.model_dump_json())

    def _post_raw(self, function: str, payload: dict) -> dict:
        return self._send(function, None, json=payload)

    def _send(self, function: str, data: Optional[str], **kwargs) -> dict:
        url = f"{self.base_url}/{function}"
        r = self.session.post(url, data=data, timeout=self.config.request_timeout, **kwargs)
        if is_retryable_status(r.status_code):
            raise RetryableHTTPError(r.status_code, r.text)
        if r.status_code >= 400:
            raise TallySyncError(f"{function} returned HTTP {r.status_code}: {r.text[:200]}")
        try:
            body = r.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("success") is False:
            raise TallySyncError(f"{function} failed: {body.get('error') or body.get('message')}")
        logger.debug(f"{function} OK: {str(body)[:200]}")
        return body

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
