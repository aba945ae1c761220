import json

import httpx
import pytest

from src.sei_rpc import SeiRPCClient
from src.x402_types import LedgerRPCError, LedgerTimeoutError

RPC_URL = "https://rpc.test"


def _rpc(handler) -> SeiRPCClient:
    return SeiRPCClient(RPC_URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _result(request: httpx.Request, result) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.mark.asyncio
async def test_receipt_is_parsed():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.update(body)
        return _result(
            request,
            {
                "transactionHash": "0xabc",
                "status": "0x1",
                "to": "0x4fcf1784b31630811181f670aea7a7bef803eaed",
                "from": "0x1234567890abcdef1234567890abcdef12345678",
                "blockNumber": "0x10",
                "logs": [{"address": "0x4fcf", "topics": ["0xddf2"], "data": "0x3e8"}],
            },
        )

    rpc = _rpc(handler)
    receipt = await rpc.get_transaction_receipt("0xabc")
    await rpc.close()

    assert seen["method"] == "eth_getTransactionReceipt"
    assert seen["params"] == ["0xabc"]
    assert receipt.succeeded
    assert receipt.block_number == 16
    assert receipt.logs[0].data == "0x3e8"


@pytest.mark.asyncio
async def test_reverted_receipt_is_failure():
    rpc = _rpc(lambda request: _result(request, {"transactionHash": "0xabc", "status": "0x0", "to": None}))
    receipt = await rpc.get_transaction_receipt("0xabc")
    assert receipt.status == "failure"
    assert not receipt.succeeded


@pytest.mark.asyncio
async def test_unknown_transaction_returns_none():
    rpc = _rpc(lambda request: _result(request, None))
    assert await rpc.get_transaction_receipt("0xabc") is None


@pytest.mark.asyncio
async def test_rpc_error_object_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}})

    with pytest.raises(LedgerRPCError, match="boom"):
        await _rpc(handler).get_transaction_receipt("0xabc")


@pytest.mark.asyncio
async def test_http_error_raises():
    with pytest.raises(LedgerRPCError):
        await _rpc(lambda request: httpx.Response(503)).get_transaction_receipt("0xabc")


@pytest.mark.asyncio
async def test_timeout_raises_ledger_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(LedgerTimeoutError):
        await _rpc(handler).get_transaction_receipt("0xabc")


@pytest.mark.asyncio
async def test_hex_quantities_are_decoded():
    results = {"eth_getTransactionCount": "0x7", "eth_gasPrice": "0x3b9aca00"}

    def handler(request: httpx.Request) -> httpx.Response:
        return _result(request, results[json.loads(request.content)["method"]])

    rpc = _rpc(handler)
    assert await rpc.get_transaction_count("0x1234567890abcdef1234567890abcdef12345678") == 7
    assert await rpc.gas_price() == 1_000_000_000
