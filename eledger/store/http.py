"""
Remote ledger API adapter (small, dependency-free).

Endpoints:
  GET  /units                   -> {"units": [...]}
  GET  /units/{id}              -> unit record (404 when absent)
  PUT  /units/{id}              -> whole-record overwrite
  GET  /logistics-units[/{sscc}]
  PUT  /logistics-units/{sscc}
  GET  /verification-requests
  POST /verification-requests

Writes carry an Idempotency-Key header so a retried PUT/POST is applied
at most once by the server.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from ..errors import StoreUnavailableError
from ..ledger.logistics import LogisticsUnit
from ..ledger.models import TrackedUnit
from ..ledger.verification import VerificationRequest
from .base import LedgerStore
from .retry import RetryableError, RetryPolicy

logger = logging.getLogger(__name__)

# Status codes worth another attempt
RETRY_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class HttpStoreConfig:
    api_url: str
    token: str | None = None
    timeout_s: float = 10.0


class _NotFound(Exception):
    pass


class HttpStore(LedgerStore):
    """LedgerStore over a JSON HTTP API."""

    name = "http"

    def __init__(
        self,
        cfg: HttpStoreConfig,
        retry: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._cfg = cfg
        self._base = cfg.api_url.rstrip("/")
        self.retry = retry or RetryPolicy()
        self._sleep = sleep

    def _headers(self, idempotency_key: str | None) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._cfg.token:
            headers["Authorization"] = f"Bearer {self._cfg.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _once(self, method: str, path: str, body: bytes | None, idempotency_key: str | None) -> Any:
        req = Request(
            f"{self._base}{path}",
            data=body,
            method=method,
            headers=self._headers(idempotency_key),
        )
        try:
            with urlopen(req, timeout=self._cfg.timeout_s) as resp:
                raw = resp.read()
        except HTTPError as e:
            if e.code == 404:
                raise _NotFound(path) from e
            if e.code in RETRY_STATUSES:
                raise RetryableError(f"HTTP {e.code}: {e.reason}") from e
            raise StoreUnavailableError(f"ledger API error {e.code} on {method} {path}: {e.reason}") from e
        except URLError as e:
            raise RetryableError(f"connection error: {e.reason}") from e
        except TimeoutError as e:
            raise RetryableError("request timed out") from e
        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"ledger API returned invalid JSON for {method} {path}") from e

    def _request(self, method: str, path: str, payload: Any = None) -> Any:
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        # Same key on every attempt of this write.
        key = hashlib.sha256(f"{method} {path}\n".encode("utf-8") + body).hexdigest() if body is not None else None
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        try:
            return self.retry.run(
                lambda: self._once(method, path, body, key),
                describe=f"{method} {path}",
                **kwargs,
            )
        except RetryableError as e:
            raise StoreUnavailableError(
                f"ledger API unreachable after {self.retry.max_attempts} attempts: {e}"
            ) from e

    def _get_optional(self, path: str) -> Any:
        try:
            return self._request("GET", path)
        except _NotFound:
            return None

    def _get_list(self, path: str, key: str) -> list[dict[str, Any]]:
        try:
            payload = self._request("GET", path)
        except _NotFound:
            return []
        if isinstance(payload, dict):
            payload = payload.get(key)
        return list(payload or [])

    def _send(self, method: str, path: str, payload: dict[str, Any]) -> None:
        try:
            self._request(method, path, payload)
        except _NotFound as e:
            raise StoreUnavailableError(f"ledger API has no endpoint {path}") from e

    # Units

    def get_unit(self, unit_id: str) -> TrackedUnit | None:
        data = self._get_optional(f"/units/{quote(unit_id, safe='')}")
        return TrackedUnit.from_dict(data) if data else None

    def list_units(self) -> list[TrackedUnit]:
        return [TrackedUnit.from_dict(r) for r in self._get_list("/units", "units")]

    def put_unit(self, unit: TrackedUnit) -> None:
        self._send("PUT", f"/units/{quote(unit.unit_id, safe='')}", unit.to_dict())

    # Logistics units

    def get_logistics_unit(self, sscc: str) -> LogisticsUnit | None:
        data = self._get_optional(f"/logistics-units/{quote(sscc, safe='')}")
        return LogisticsUnit.from_dict(data) if data else None

    def list_logistics_units(self) -> list[LogisticsUnit]:
        return [LogisticsUnit.from_dict(r) for r in self._get_list("/logistics-units", "logistics_units")]

    def put_logistics_unit(self, lu: LogisticsUnit) -> None:
        self._send("PUT", f"/logistics-units/{quote(lu.sscc, safe='')}", lu.to_dict())

    # Verification requests

    def put_verification(self, request: VerificationRequest) -> None:
        self._send("POST", "/verification-requests", request.to_dict())

    def list_verifications(self) -> list[VerificationRequest]:
        return [
            VerificationRequest.from_dict(r)
            for r in self._get_list("/verification-requests", "verification_requests")
        ]


__all__ = ["HttpStore", "HttpStoreConfig", "RETRY_STATUSES"]
