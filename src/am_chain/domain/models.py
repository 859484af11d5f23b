"""Domain models for am_chain: what the ledger reports about a transaction."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TxOutput:
    """One side of a UTxO: an address and the assets it carries (unit -> quantity)."""

    address: str
    amounts: dict[str, int] = field(default_factory=dict)

    def quantity_of(self, unit: str) -> int:
        return self.amounts.get(unit, 0)


@dataclass
class ChainTransaction:
    tx_hash: str
    confirmations: int
    inputs: list[TxOutput]
    outputs: list[TxOutput]
    # JSON metadata under the marketplace label, None when absent
    attached_terms: dict[str, Any] | None = None

    def outputs_to(self, address: str) -> list[TxOutput]:
        return [o for o in self.outputs if o.address == address]

    def paid_to(self, address: str, unit: str) -> int:
        """Total quantity of `unit` sent to `address` by this transaction."""
        return sum(o.quantity_of(unit) for o in self.outputs_to(address))

    def input_addresses(self) -> set[str]:
        return {i.address for i in self.inputs}
