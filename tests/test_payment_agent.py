import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from conftest import ASSET, PAYER, RECIPIENT, StubLedger, StubWallet
from src.main import create_app
from src.payment_agent import PaymentAgent
from src.x402_types import (
    PaymentExecutionError,
    PaymentFlowError,
    PaymentNotAcceptedError,
    PaymentProof,
    ProofPayload,
)


def _agent(config, ledger, wallet, **kwargs) -> PaymentAgent:
    app = create_app(config, ledger)
    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    return PaymentAgent("http://test", wallet, ledger, config, http_client=client, poll_interval_seconds=0.01, **kwargs)


@pytest.mark.asyncio
async def test_full_round_trip(config):
    ledger = StubLedger()
    wallet = StubWallet(ledger)
    agent = _agent(config, ledger, wallet)

    weather = await agent.get_weather("Sei Network")
    await agent.close()

    assert wallet.transfers == [(ASSET, 1000, RECIPIENT)]
    assert weather["location"] == "Sei Network"
    assert weather["payment"]["isValid"] is True
    assert weather["payment"]["cached"] is False


@pytest.mark.asyncio
async def test_pay_builds_proof_from_challenge(config):
    ledger = StubLedger()
    agent = _agent(config, ledger, StubWallet(ledger))

    challenge = await agent.request_resource("/api/weather")
    proof = await agent.pay(challenge)

    assert proof.x402_version == 1
    assert proof.scheme == "exact"
    assert proof.network == "sei-testnet"
    assert proof.payload.amount == "1000"
    assert PaymentProof.decode(proof.encode()) == proof


@pytest.mark.asyncio
async def test_rejected_proof_surfaces_fresh_challenge(config):
    ledger = StubLedger()
    wallet = StubWallet(ledger, to="0x000000000000000000000000000000000000dEaD")
    agent = _agent(config, ledger, wallet)

    with pytest.raises(PaymentNotAcceptedError) as info:
        await agent.get_weather()

    assert info.value.challenge is not None
    assert info.value.challenge.error == "invalid transfer details"


@pytest.mark.asyncio
async def test_retry_with_unknown_transaction(config):
    ledger = StubLedger()
    agent = _agent(config, ledger, StubWallet(ledger))
    proof = PaymentProof(
        x402_version=1,
        scheme="exact",
        network="sei-testnet",
        payload=ProofPayload(tx_hash="0xnever", amount="1000"),
    )

    with pytest.raises(PaymentNotAcceptedError, match="transaction failed or not found"):
        await agent.retry_with_proof("/api/weather", proof)


@pytest.mark.asyncio
async def test_spending_limit_is_enforced(config):
    ledger = StubLedger()
    wallet = StubWallet(ledger)
    agent = _agent(config, ledger, wallet, max_amount=999)

    challenge = await agent.request_resource("/api/weather")
    with pytest.raises(PaymentExecutionError):
        await agent.pay(challenge)
    assert wallet.transfers == []


@pytest.mark.asyncio
async def test_reverted_payment_is_reported(config):
    ledger = StubLedger()
    agent = _agent(config, ledger, StubWallet(ledger, status="failure"))

    challenge = await agent.request_resource("/api/weather")
    with pytest.raises(PaymentExecutionError, match="reverted"):
        await agent.pay(challenge)


@pytest.mark.asyncio
async def test_unconfirmed_payment_times_out(config):
    class LostWallet(StubWallet):
        async def transfer(self, asset_address, amount, recipient):
            return "0xlost"

    ledger = StubLedger()
    agent = _agent(config, ledger, LostWallet(ledger), confirmation_timeout_seconds=0.05)

    challenge = await agent.request_resource("/api/weather")
    with pytest.raises(PaymentExecutionError, match="Timed out"):
        await agent.pay(challenge)


@pytest.mark.asyncio
async def test_unprotected_resource_is_a_flow_error(config):
    ledger = StubLedger()
    agent = _agent(config, ledger, StubWallet(ledger))

    with pytest.raises(PaymentFlowError, match="Expected 402"):
        await agent.request_resource("/health")


@pytest.mark.asyncio
async def test_balance_in_whole_tokens(config):
    ledger = StubLedger()
    agent = _agent(config, ledger, StubWallet(ledger))
    assert str(await agent.get_balance()) == "2.5"


@pytest.mark.asyncio
async def test_sei_price(config):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["ids"] == "sei-network"
        return httpx.Response(200, json={"sei-network": {"usd": 0.42}})

    ledger = StubLedger()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    agent = PaymentAgent("http://test", StubWallet(ledger), ledger, config, http_client=client)

    assert await agent.get_sei_price() == 0.42


@pytest.mark.asyncio
async def test_transfer_token_converts_to_smallest_units(config):
    ledger = StubLedger()
    wallet = StubWallet(ledger)
    agent = _agent(config, ledger, wallet)

    tx_hash = await agent.transfer_token(PAYER, "1.25")

    assert wallet.transfers == [(ASSET, 1_250_000, PAYER)]
    assert tx_hash in ledger.receipts


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "0.0000001", "-1", "lots"])
async def test_transfer_token_refuses_invalid_amounts(config, amount):
    ledger = StubLedger()
    wallet = StubWallet(ledger)
    agent = _agent(config, ledger, wallet)

    with pytest.raises(PaymentExecutionError):
        await agent.transfer_token(PAYER, amount)
    assert wallet.transfers == []
