import asyncio
from typing import Any, Dict, List, Optional

import pytest

from src.x402_config import X402Config
from src.x402_types import PaymentProof, ProofPayload, TransactionReceipt

ASSET = "0x4fCF1784B31630811181f670Aea7A7bEF803eaED"
RECIPIENT = "0x9dC2aA0038830c052253161B1EE49B9dD449bD66"
PAYER = "0x1234567890abcdef1234567890abcdef12345678"


class StubLedger:
    """In-memory ledger returning canned receipts and counting lookups"""

    def __init__(self, receipts: Optional[Dict[str, TransactionReceipt]] = None, delay: float = 0.0):
        self.receipts = dict(receipts or {})
        self.delay = delay
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        self.calls.append(tx_hash)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.receipts.get(tx_hash)


class StubWallet:
    def __init__(self, ledger: StubLedger, address: str = PAYER, to: str = ASSET, status: str = "success"):
        self.ledger = ledger
        self.address = address
        self.to = to
        self.status = status
        self.transfers = []

    async def transfer(self, asset_address: str, amount: int, recipient: str) -> str:
        tx_hash = f"0x{len(self.transfers) + 1:064x}"
        self.transfers.append((asset_address, amount, recipient))
        self.ledger.receipts[tx_hash] = receipt(tx_hash, status=self.status, to=self.to)
        return tx_hash

    async def balance_of(self, asset_address: str, owner: Optional[str] = None) -> int:
        return 2_500_000


def receipt(tx_hash: str, status: str = "success", to: Optional[str] = ASSET, logs=None) -> TransactionReceipt:
    return TransactionReceipt(transaction_hash=tx_hash, status=status, to=to, logs=logs or [])


def make_proof(
    tx_hash: Optional[str] = "0xabc",
    network: str = "sei-testnet",
    version: Any = 1,
    scheme: str = "exact",
    amount: str = "1000",
) -> str:
    return PaymentProof(
        x402_version=version,
        scheme=scheme,
        network=network,
        payload=ProofPayload(tx_hash=tx_hash, amount=amount, from_address=PAYER),
    ).encode()


@pytest.fixture
def config() -> X402Config:
    return X402Config(asset_address=ASSET, recipient_address=RECIPIENT, rpc_timeout_seconds=1.0)


@pytest.fixture
def ledger() -> StubLedger:
    return StubLedger()
