# app/services/storage/jsonbin.py

from __future__ import annotations

from typing import Optional

import httpx

from app.core.errors import LedgerReadError, LedgerWriteError
from app.services.storage.ledger_store import LedgerStore, ensure_json_document


class JsonBinLedgerStore(LedgerStore):
    """
    Ledger kept as a single JSONBin document.
    GET returns {"record": <document>, "metadata": {...}}; PUT replaces the record.
    """

    name = "jsonbin"

    def __init__(
        self,
        *,
        url: str,
        master_key: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not (url or "").strip():
            raise RuntimeError("JSONBIN_URL is not configured.")
        self.url = url.strip()
        self.master_key = (master_key or "").strip()
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.master_key:
            headers["X-Master-Key"] = self.master_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def read(self) -> dict:
        try:
            async with self._client() as client:
                r = await client.get(self.url, headers=self._headers())
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerReadError(f"JSONBin read failed: {e}") from e

        record = data.get("record") if isinstance(data, dict) else None
        return record if isinstance(record, dict) else {}

    async def write(self, document: dict) -> None:
        document = ensure_json_document(document)
        try:
            async with self._client() as client:
                r = await client.put(self.url, headers=self._headers(), json=document)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise LedgerWriteError(f"JSONBin write failed: {e}") from e
