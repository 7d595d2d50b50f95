"""
RemoteLedgerSync — best-effort mirror of ledger entries to a Supabase/PostgREST table.

Никогда не источник истины для доступа: ошибки только логируются, push не блокирует
и не откатывает локальное решение. Удалённые данные используются лишь для
кросс-девайс истории (импорт в локальный ledger).
"""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

import httpx
import pybreaker

from app.core.config import settings
from app.schemas.payments import PaymentRecord
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import remote_sync_total

logger = logging.getLogger(__name__)


class RemoteSyncError(Exception):
    """Remote store answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteLedgerSync:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        table: str = "payments",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self._client = client
        self._breaker = breaker
        self._executor: ThreadPoolExecutor | None = None

    @classmethod
    def from_settings(cls) -> "RemoteLedgerSync":
        return cls(
            settings.remote_sync_url,
            settings.remote_sync_api_key,
            table=settings.remote_sync_table,
            timeout=settings.http_client_timeout,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.api_key)

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker("remote_sync")
        return self._breaker

    @property
    def _table_url(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _post(self, record: PaymentRecord) -> None:
        response = self.client.post(
            self._table_url,
            headers={**self._headers(), "Prefer": "return=minimal"},
            json=record.to_remote(),
        )
        if response.status_code not in (200, 201, 204):
            raise RemoteSyncError(
                f"Remote insert returned {response.status_code}",
                status_code=response.status_code,
            )

    def push(self, record: PaymentRecord) -> bool:
        """Mirror one ledger entry. Never raises; returns True on success."""
        if not self.enabled:
            remote_sync_total.labels(operation="push", status="skipped").inc()
            logger.info("remote_sync_disabled", extra={"reference": record.reference})
            return False
        try:
            self.breaker.call(self._post, record)
        except (httpx.HTTPError, RemoteSyncError, pybreaker.CircuitBreakerError) as e:
            remote_sync_total.labels(operation="push", status="error").inc()
            extra = {"reference": record.reference, "user_id": record.user_id, "error": str(e)}
            if isinstance(e, RemoteSyncError) and e.status_code in (401, 403):
                # Row-level security rejected the insert; local ledger still has the entry
                extra["reason"] = "row_level_security"
            logger.warning("remote_sync_push_failed", extra=extra)
            return False
        remote_sync_total.labels(operation="push", status="success").inc()
        logger.info("remote_sync_pushed", extra={"reference": record.reference, "user_id": record.user_id})
        return True

    def push_in_background(self, record: PaymentRecord) -> Future:
        """Fire-and-forget push on a single worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="remote-sync")
        return self._executor.submit(self.push, record)

    def close(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def _get_for_user(self, user_id: str) -> list[dict]:
        response = self.client.get(
            self._table_url,
            headers=self._headers(),
            params={
                "user_id": f"eq.{user_id}",
                "select": "*",
                "order": "created_at.desc",
            },
        )
        if response.status_code != 200:
            raise RemoteSyncError(
                f"Remote select returned {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    def fetch_for_user(self, user_id: str) -> list[PaymentRecord]:
        """Remote history for one user, newest first. Empty on any failure."""
        if not self.enabled:
            remote_sync_total.labels(operation="fetch", status="skipped").inc()
            return []
        try:
            rows = self.breaker.call(self._get_for_user, user_id)
        except (httpx.HTTPError, RemoteSyncError, pybreaker.CircuitBreakerError, ValueError) as e:
            remote_sync_total.labels(operation="fetch", status="error").inc()
            logger.warning("remote_sync_fetch_failed", extra={"user_id": user_id, "error": str(e)})
            return []

        records = []
        for row in rows:
            try:
                records.append(PaymentRecord.from_remote(row))
            except ValueError as e:
                logger.warning(
                    "remote_sync_row_skipped",
                    extra={"user_id": user_id, "reference": row.get("tx_ref"), "error": str(e)},
                )
        remote_sync_total.labels(operation="fetch", status="success").inc()
        return records
