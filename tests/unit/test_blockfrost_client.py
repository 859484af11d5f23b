"""BlockfrostLedgerClient against an httpx.MockTransport."""
import json

import httpx
import pytest

from src.am_chain.infrastructure.blockfrost_client import BlockfrostLedgerClient
from src.am_common.errors import (
    MalformedSignalError,
    NetworkUnavailableError,
    TransactionNotFoundError,
)

TX = "9f" * 32


def _routes(overrides: dict | None = None):
    routes = {
        f"/api/v0/txs/{TX}": (200, {"hash": TX, "block_height": 100}),
        "/api/v0/blocks/latest": (200, {"height": 102}),
        f"/api/v0/txs/{TX}/utxos": (
            200,
            {
                "inputs": [{"address": "addr_buyer", "amount": [{"unit": "lovelace", "quantity": "5000000"}]}],
                "outputs": [
                    {"address": "addr_market", "amount": [{"unit": "lovelace", "quantity": "3000000"}]},
                    {"address": "addr_market", "amount": [
                        {"unit": "lovelace", "quantity": "1000000"},
                        {"unit": "policy.token", "quantity": "7"},
                    ]},
                ],
            },
        ),
        f"/api/v0/txs/{TX}/metadata": (
            200,
            [
                {"label": "1", "json_metadata": {"other": True}},
                {"label": "674", "json_metadata": {"action": "Delist"}},
            ],
        ),
    }
    routes.update(overrides or {})
    return routes


def _client(routes: dict, seen: list | None = None) -> BlockfrostLedgerClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/api/v0/tx/submit":
            return httpx.Response(200, json=TX)
        status, body = routes.get(request.url.path, (404, {"message": "not found"}))
        return httpx.Response(status, content=json.dumps(body))

    return BlockfrostLedgerClient(
        base_url="https://ledger.test/api/v0",
        project_id="preprodKEY",
        metadata_label="674",
        transport=httpx.MockTransport(handler),
    )


class TestGetTransaction:
    @pytest.mark.asyncio
    async def test_builds_chain_transaction(self) -> None:
        seen: list[httpx.Request] = []
        client = _client(_routes(), seen)

        tx = await client.get_transaction(TX)

        assert tx.confirmations == 3
        assert tx.paid_to("addr_market", "lovelace") == 4_000_000
        assert tx.paid_to("addr_market", "policy.token") == 7
        assert tx.input_addresses() == {"addr_buyer"}
        assert tx.attached_terms == {"action": "Delist"}
        assert all(r.headers["project_id"] == "preprodKEY" for r in seen)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unconfirmed_transaction_has_zero_confirmations(self) -> None:
        client = _client(_routes({f"/api/v0/txs/{TX}": (200, {"block_height": None})}))
        tx = await client.get_transaction(TX)
        assert tx.confirmations == 0

    @pytest.mark.asyncio
    async def test_missing_metadata_label(self) -> None:
        client = _client(_routes({f"/api/v0/txs/{TX}/metadata": (200, [])}))
        tx = await client.get_transaction(TX)
        assert tx.attached_terms is None

    @pytest.mark.asyncio
    async def test_unknown_transaction(self) -> None:
        client = _client({})
        with pytest.raises(TransactionNotFoundError):
            await client.get_transaction(TX)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_throttled_or_down(self, status) -> None:
        client = _client(_routes({f"/api/v0/txs/{TX}": (status, {"error": "x"})}))
        with pytest.raises(NetworkUnavailableError):
            await client.get_transaction(TX)

    @pytest.mark.asyncio
    async def test_bad_request(self) -> None:
        client = _client(_routes({f"/api/v0/txs/{TX}": (400, {"error": "bad hash"})}))
        with pytest.raises(MalformedSignalError):
            await client.get_transaction(TX)

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = BlockfrostLedgerClient(
            "https://ledger.test/api/v0", "k", "674", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(NetworkUnavailableError):
            await client.get_transaction(TX)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_posts_cbor_bytes(self) -> None:
        seen: list[httpx.Request] = []
        client = _client({}, seen)

        tx_hash = await client.submit("84a30081")

        assert tx_hash == TX
        [request] = seen
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/cbor"
        assert request.content == bytes.fromhex("84a30081")

    @pytest.mark.asyncio
    async def test_rejects_non_hex(self) -> None:
        client = _client({})
        with pytest.raises(MalformedSignalError):
            await client.submit("zz-not-hex")
