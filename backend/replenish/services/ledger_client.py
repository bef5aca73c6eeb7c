# Overview: HTTP client for a ledger running as a separate service (LEDGER_MODE=remote).

from __future__ import annotations

import logging

import httpx
from flask import current_app

from ..errors import OrderError, StorageFailure, error_from_payload

logger = logging.getLogger(__name__)


class RemoteLedgerClient:
    """
    Talks to the /api/ledger endpoints of another instance of this service.

    Every call has a bounded timeout. Timeouts and transport errors become
    StorageFailure (outcome unknown); error responses are rebuilt into the
    domain error named by their "code".
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self.client.close()

    def _send(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Ledger %s %s timed out", method, path)
            raise StorageFailure(f"Ledger service timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Ledger %s %s failed: %s", method, path, exc)
            raise StorageFailure(f"Ledger service unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            if not isinstance(body, dict):
                body = {}
            body.setdefault("error", f"Ledger service returned HTTP {response.status_code}")
            raise error_from_payload(body)
        return body

    def _post_entry(self, path: str, payload: dict) -> dict:
        body = self._send("POST", path, json=payload)
        tx = body.get("transaction")
        if not isinstance(tx, dict):
            raise StorageFailure("Ledger service response missing transaction")
        return tx

    def deduct(self, amount_cents: int, *, request_id: int, actor: str, description: str | None = None,
               idempotency_key: str | None = None) -> dict:
        return self._post_entry("/api/ledger/deduct", {
            "amount_cents": amount_cents,
            "request_id": request_id,
            "actor": actor,
            "description": description,
            "idempotency_key": idempotency_key,
        })

    def restore(self, amount_cents: int, *, request_id: int, actor: str, tx_type: str,
                description: str | None = None, idempotency_key: str | None = None) -> dict:
        return self._post_entry("/api/ledger/restore", {
            "amount_cents": amount_cents,
            "request_id": request_id,
            "actor": actor,
            "type": tx_type,
            "description": description,
            "idempotency_key": idempotency_key,
        })

    def add_profit(self, amount_cents: int, *, request_id: int, actor: str, description: str | None = None,
                   idempotency_key: str | None = None) -> dict:
        return self._post_entry("/api/ledger/profit", {
            "amount_cents": amount_cents,
            "request_id": request_id,
            "actor": actor,
            "description": description,
            "idempotency_key": idempotency_key,
        })

    def find_transaction(self, idempotency_key: str) -> dict | None:
        """The row written under this key, or None if the ledger never applied it."""
        body = self._send("GET", "/api/ledger/transactions",
                          params={"idempotency_key": idempotency_key, "limit": 1})
        for tx in body.get("transactions") or []:
            if tx.get("idempotency_key") == idempotency_key:
                return tx
        return None

    def get_account(self) -> dict:
        return self._send("GET", "/api/ledger/account").get("account") or {}


def get_ledger_client() -> RemoteLedgerClient:
    """
    The app's ledger client, created on first use from config.

    Tests can pre-seed app.extensions["ledger_client"] with a client built on
    an httpx.MockTransport.
    """
    client = current_app.extensions.get("ledger_client")
    if client is None:
        client = RemoteLedgerClient(
            current_app.config["LEDGER_SERVICE_URL"],
            timeout=float(current_app.config.get("LEDGER_TIMEOUT_SECONDS", 5.0)),
        )
        current_app.extensions["ledger_client"] = client
    return client


def is_definitive(exc: OrderError) -> bool:
    """True when the ledger certainly did not apply the entry (it answered with a domain error)."""
    return not isinstance(exc, StorageFailure)
