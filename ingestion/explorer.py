# ingestion/explorer.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from common.settings import DEFAULT_BASE_URL, Explorer as ExplorerSettings
from ingestion.models import BATCH_ALL_CALL, Module, StakingCall

log = logging.getLogger(__name__)

EVENT_PARAMS = "event/params"
EXTRINSIC = "extrinsic"
EXTRINSICS = "extrinsics"


class ExplorerError(RuntimeError):
    pass


class ExplorerBusyError(ExplorerError):
    """Raised only when a capped RetryPolicy runs out of attempts."""


@dataclass
class RetryPolicy:
    """
    Fixed delay retry for busy responses.

    max_attempts=None retries forever: a server that never returns code 0
    stalls the caller indefinitely.
    """
    delay: float = 1.0
    max_attempts: Optional[int] = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts

    def wait(self) -> None:
        self.sleep(self.delay)


def _field(body: Any, *path: str) -> Any:
    cur = body
    for name in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(name)
    return cur


def _as_list(value: Any) -> Optional[list]:
    return value if isinstance(value, list) else None


class ExplorerClient:
    """
    Subscan query client.

    Every query is an authenticated POST to {base_url}/api/scan/{endpoint}.
    The response envelope is {code, message, data}; code 0 is success and any
    other code is retried after a fixed delay.
    """

    def __init__(
        self,
        network: str = "alephzero",
        api_key: str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
    ):
        self.network = network
        self.api_key = api_key or ""
        self.base_url = base_url.format(network=network).rstrip("/")
        self.timeout = timeout
        self.retry = retry or RetryPolicy()

    @classmethod
    def from_settings(cls, st: ExplorerSettings, *, sleep: Callable[[float], None] = time.sleep) -> "ExplorerClient":
        return cls(
            st.network,
            st.api_key or "",
            base_url=st.base_url,
            timeout=st.timeout,
            retry=RetryPolicy(delay=st.retry_delay, max_attempts=st.max_attempts, sleep=sleep),
        )

    def url(self, endpoint: str) -> str:
        return f"{self.base_url}/api/scan/{endpoint}"

    def _post(self, url: str, payload: Dict[str, Any]) -> requests.Response:
        headers = {"X-API-Key": self.api_key, "Content-Type": "application/json"}
        try:
            return requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExplorerError(f"explorer transport failed url={url}") from e

    def query(self, endpoint: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Return the parsed response body once the explorer answers with code 0.

        Returns None when the body is not a JSON envelope with an integer code.
        Raises ExplorerError on transport failures and non retryable HTTP errors.
        """
        url = self.url(endpoint)
        attempt = 0
        while True:
            attempt += 1
            resp = self._post(url, payload)
            try:
                body = resp.json()
            except ValueError:
                body = None

            code = _field(body, "code")
            has_code = isinstance(code, int) and not isinstance(code, bool)
            if resp.status_code == 429 and not has_code:
                code, body = 429, {"code": 429, "message": "Too Many Requests"}
            # an error status with a nonzero envelope code is retried like any busy reply
            elif resp.status_code >= 400 and resp.status_code != 429 and not (has_code and code != 0):
                try:
                    resp.raise_for_status()
                except requests.HTTPError as e:
                    raise ExplorerError(f"explorer HTTP {resp.status_code} url={url}") from e

            if not isinstance(code, int) or isinstance(code, bool):
                log.warning("Malformed response from %s: missing integer code", endpoint)
                return None
            if code == 0:
                return body

            message = _field(body, "message")
            if not self.retry.should_retry(attempt):
                raise ExplorerBusyError(f"{endpoint} still busy after {attempt} attempts: [{code}] {message}")
            log.error("Parse error[%s]: %s. Sleeping %s seconds.", code, message, self.retry.delay)
            self.retry.wait()

    # ---- logical queries ----

    def event_params(self, event_indexes: List[str]) -> Optional[list]:
        body = self.query(EVENT_PARAMS, {"event_index": list(event_indexes)})
        return _as_list(_field(body, "data"))

    def extrinsic_events(self, extrinsic_index: str) -> Optional[list]:
        body = self.query(EXTRINSIC, {"extrinsic_index": extrinsic_index, "only_extrinsic_event": True})
        return _as_list(_field(body, "data", "event"))

    def extrinsics(
        self,
        address: str,
        module: Union[Module, str],
        call: Union[StakingCall, str],
        *,
        page: int = 0,
        row: int = 10,
    ) -> Optional[list]:
        payload = {
            "address": address,
            "row": row,
            "page": page,
            "module": getattr(module, "value", module),
            "call": getattr(call, "value", call),
            "success": True,
        }
        body = self.query(EXTRINSICS, payload)
        return _as_list(_field(body, "data", "extrinsics"))

    def batch_all(self, address: str, *, page: int = 0, row: int = 10) -> Optional[list]:
        return self.extrinsics(address, Module.UTILITY, BATCH_ALL_CALL, page=page, row=row)
