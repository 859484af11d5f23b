"""BlockfrostLedgerClient: LedgerClientProtocol over a Blockfrost-compatible REST API.

Endpoints used:
    GET  /txs/{hash}            block_height of the transaction
    GET  /blocks/latest         chain tip height (confirmations = tip - height + 1)
    GET  /txs/{hash}/utxos      inputs / outputs with per-unit quantities
    GET  /txs/{hash}/metadata   [{label, json_metadata}]
    POST /tx/submit             raw CBOR body, returns the tx hash

A 404 on a transaction means the indexer has not seen it yet; callers treat
it as transient. Transport errors, 429 and 5xx map to NetworkUnavailableError.
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from src.am_chain.domain.models import ChainTransaction, TxOutput
from src.am_common.errors import (
    MalformedSignalError,
    NetworkUnavailableError,
    TransactionNotFoundError,
)

logger = logging.getLogger(__name__)


def _to_output(entry: dict[str, Any]) -> TxOutput:
    amounts: dict[str, int] = {}
    for amount in entry.get("amount", []):
        unit = amount["unit"]
        amounts[unit] = amounts.get(unit, 0) + int(amount["quantity"])
    return TxOutput(address=entry["address"], amounts=amounts)


class BlockfrostLedgerClient:
    def __init__(
        self,
        base_url: str,
        project_id: str,
        metadata_label: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._metadata_label = metadata_label
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"project_id": project_id},
            timeout=timeout,
            transport=transport,
        )

    async def _send(self, request: httpx.Request, tx_hash: str | None = None) -> Any:
        try:
            response = await self._client.send(request)
        except httpx.TransportError as exc:
            raise NetworkUnavailableError(f"ledger unreachable: {exc}") from exc

        if response.status_code == 404 and tx_hash is not None:
            raise TransactionNotFoundError(tx_hash)
        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkUnavailableError(f"ledger returned {response.status_code}")
        if response.status_code >= 400:
            raise MalformedSignalError(f"ledger rejected request: {response.text}")
        return response.json()

    async def _get(self, path: str, tx_hash: str | None = None) -> Any:
        return await self._send(self._client.build_request("GET", path), tx_hash)

    async def get_transaction(self, tx_hash: str) -> ChainTransaction:
        tx = await self._get(f"/txs/{tx_hash}", tx_hash)
        tip = await self._get("/blocks/latest")
        utxos = await self._get(f"/txs/{tx_hash}/utxos", tx_hash)
        metadata = await self._get(f"/txs/{tx_hash}/metadata", tx_hash)

        height = tx.get("block_height")
        confirmations = 0 if height is None else max(tip["height"] - height + 1, 0)

        attached: dict[str, Any] | None = None
        for item in metadata:
            if str(item.get("label")) == self._metadata_label:
                attached = item.get("json_metadata")
                break

        return ChainTransaction(
            tx_hash=tx_hash,
            confirmations=confirmations,
            inputs=[_to_output(i) for i in utxos.get("inputs", [])],
            outputs=[_to_output(o) for o in utxos.get("outputs", [])],
            attached_terms=attached,
        )

    async def submit(self, signed_tx: str) -> str:
        try:
            body = bytes.fromhex(signed_tx)
        except ValueError:
            raise MalformedSignalError("signed transaction is not valid hex") from None
        request = self._client.build_request(
            "POST",
            "/tx/submit",
            content=body,
            headers={"Content-Type": "application/cbor"},
        )
        tx_hash = str(await self._send(request))
        logger.info("Submitted transaction %s", tx_hash)
        return tx_hash

    async def aclose(self) -> None:
        await self._client.aclose()


_ledger_client: BlockfrostLedgerClient | None = None


def get_ledger_client() -> BlockfrostLedgerClient:
    """Process-wide client built from settings."""
    global _ledger_client  # noqa: PLW0603
    if _ledger_client is None:
        _ledger_client = BlockfrostLedgerClient(
            base_url=settings.LEDGER_API_URL,
            project_id=settings.LEDGER_PROJECT_ID,
            metadata_label=settings.CHAIN_TERMS_METADATA_LABEL,
            timeout=settings.LEDGER_TIMEOUT_SECONDS,
        )
    return _ledger_client


async def close_ledger_client() -> None:
    global _ledger_client  # noqa: PLW0603
    if _ledger_client is not None:
        await _ledger_client.aclose()
        _ledger_client = None
