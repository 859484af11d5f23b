# src/am_chain/domain/client.py
"""LedgerClient Protocol. The engine depends on this, never on a concrete client.

Unit tests inject an in-memory ledger conforming to this Protocol.
"""

from typing import Protocol

from src.am_chain.domain.models import ChainTransaction


class LedgerClientProtocol(Protocol):
    async def get_transaction(self, tx_hash: str) -> ChainTransaction:
        """Raises TransactionNotFoundError or NetworkUnavailableError."""
        ...

    async def submit(self, signed_tx: str) -> str:
        """Submit a signed transaction (CBOR hex). Returns its hash."""
        ...

    async def aclose(self) -> None: ...
