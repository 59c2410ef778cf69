"""
Tally HTTP client.

Posts <ENVELOPE> XML requests to Tally's TDL export endpoint and returns the
raw XML response.
"""
from __future__ import annotations
import re
from html import unescape
from typing import Optional
import requests
from loguru import logger

from .config import SyncConfig
from .errors import RetryableHTTPError, TallyConnectionError, TallyResponseError
from .retry import RetryPolicy, is_retryable_status

DEFAULT_HEADERS = {
    "Content-Type": "application/xml",
    "Accept": "application/xml, text/xml",
    "User-Agent": "tally-sync/1.0",
}

ERROR_PATTERNS = [
    r"<LINEERROR>(.*?)</LINEERROR>",
    r"<ERRORMSG>(.*?)</ERRORMSG>",
    r"<ERROR>(.*?)</ERROR>",
]


class TallyClient:
    """
    HTTP client for the Tally XML API.

    Features:
    - Linear-backoff retry via RetryPolicy
    - Connection pooling via requests.Session
    - Single configurable timeout
    - Error envelope detection
    """

    def __init__(self, config: Optional[SyncConfig] = None, retry_policy: Optional[RetryPolicy] = None):
        self.config = config or SyncConfig.from_env()
        self.base_url = self.config.tally_url.rstrip("/")
        self.company = self.config.tally_company
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.session = requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        # ngrok tunnels answer with an interstitial page unless told otherwise
        self.session.headers["ngrok-skip-browser-warning"] = "true"

    def post_xml(self, xml: str, timeout: Optional[int] = None) -> str:
        """
        Post XML to Tally and return the response text.

        Raises:
            TallyConnectionError: connection failed on every attempt
            TallyResponseError: Tally answered with an error envelope
        """
        return self.retry_policy.run(
            self._post_once, xml, timeout, description=f"Tally request to {self.base_url}"
        )

    def _post_once(self, xml: str, timeout: Optional[int]) -> str:
        timeout = timeout or self.config.request_timeout
        try:
            r = self.session.post(self.base_url, data=xml.encode("utf-8"), timeout=timeout)
        except requests.Timeout as e:
            logger.error(f"Tally request timed out after {timeout}s")
            raise TallyConnectionError(f"Request timeout: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Failed to connect to Tally at {self.base_url}: {e}")
            raise TallyConnectionError(f"Cannot connect to Tally: {e}") from e

        if is_retryable_status(r.status_code):
            raise RetryableHTTPError(r.status_code, r.text)
        if r.status_code >= 400:
            raise TallyResponseError(f"Tally returned HTTP {r.status_code}")

        text = r.text
        if self.is_error_response(text):
            error_msg = self.extract_error(text) or "unknown error"
            raise TallyResponseError(f"Tally error: {error_msg}")
        return text

    @staticmethod
    def is_error_response(text: str) -> bool:
        if "<STATUS>0</STATUS>" in text:
            return True
        if "<LINEERROR>" in text or "<ERRORMSG>" in text:
            return True
        return "Could not find" in text and "Report" in text

    @staticmethod
    def extract_error(text: str) -> Optional[str]:
        """Extract error message from Tally response."""
        for pattern in ERROR_PATTERNS:
            match = re.search(pattern, text, re.IGNORECASE | re.DOTALL)
            if match:
                return unescape(match.group(1).strip())

        match = re.search(r"(Could not find[^<]+)", text)
        if match:
            return unescape(match.group(1).strip())
        return None

    def test_connection(self) -> dict:
        """Test connection to Tally and return a status dict. Never raises."""
        company = f"<SVCURRENTCOMPANY>{self.company}</SVCURRENTCOMPANY>" if self.company else ""
        test_xml = f"""<ENVELOPE>
            <HEADER>
                <VERSION>1</VERSION>
                <TALLYREQUEST>Export</TALLYREQUEST>
                <TYPE>Collection</TYPE>
                <ID>ListOfGroups</ID>
            </HEADER>
            <BODY>
                <DESC>
                    <STATICVARIABLES>
                        <SVEXPORTFORMAT>$$SysName:XML</SVEXPORTFORMAT>
                        {company}
                    </STATICVARIABLES>
                    <TDL>
                        <TDLMESSAGE>
                            <COLLECTION NAME="ListOfGroups" ISMODIFY="No">
                                <TYPE>Group</TYPE>
                                <FETCH>NAME</FETCH>
                            </COLLECTION>
                        </TDLMESSAGE>
                    </TDL>
                </DESC>
            </BODY>
        </ENVELOPE>"""

        try:
            response = self._post_once(test_xml, timeout=self.config.request_timeout)
        except Exception as e:
            return {"status": "failed", "url": self.base_url, "error": str(e)}

        if "<ENVELOPE" not in response:
            return {
                "status": "connected_unknown",
                "url": self.base_url,
                "message": "Connected but unexpected response format",
            }
        return {
            "status": "connected",
            "url": self.base_url,
            "company": self.company,
            "response_length": len(response),
            "groups_found": response.count("<GROUP "),
        }

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
