"""
Shared fakes and fixtures.

FakeChainClient keeps an in-memory mempool: broadcast puts a transaction in
it, ``mine``/``include``/``forget`` move it along. FakeSigner serializes the
unsigned payload as JSON so the fake node can read the nonce back.
"""

import asyncio
import hashlib
import json
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest

from wallet_engine.chains.base import (
    ChainClient,
    ChainTransaction,
    FeeData,
    Signer,
    TransactionReceipt,
)
from wallet_engine.core.events import EventBus
from wallet_engine.core.gas import GasEstimator
from wallet_engine.core.store import InMemoryStore
from wallet_engine.core.transactions import TransactionStateMachine
from wallet_engine.providers.base import (
    ExecuteRequest,
    ProviderAdapter,
    ProviderCapabilities,
    ProviderQuote,
    ProviderState,
    ProviderStatus,
    ProviderTxRef,
    QuoteRequest,
    StepKind,
)
from wallet_engine.providers.prices import StaticPriceOracle
from wallet_engine.runtime import ManualClock, Scheduler

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"

GWEI = 10**9


# =============================================================================
# Fakes
# =============================================================================

class FakeSigner(Signer):
    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.calls: List[Dict[str, Any]] = []

    async def sign(self, unsigned_payload: Dict[str, Any], chain: str) -> str:
        self.calls.append(unsigned_payload)
        if self.fail_with is not None:
            raise self.fail_with
        return json.dumps({"chain": chain, **unsigned_payload}, sort_keys=True)


class FakeChainClient(ChainClient):
    """In-memory node for one chain."""

    def __init__(
        self,
        chain: str = "ethereum",
        *,
        fee_data: Optional[FeeData] = None,
        reports_inclusion: bool = True,
        supports_replacement: bool = True,
        required_confirmations: int = 1,
        latest_block: int = 100,
    ):
        self.chain = chain
        self.fee_data = fee_data or FeeData(gas_price=20 * GWEI)
        self.reports_inclusion = reports_inclusion
        self.supports_replacement = supports_replacement
        self.required_confirmations = required_confirmations
        self.latest_block = latest_block
        self.pending_counts: Dict[str, int] = {}
        self.transactions: Dict[str, ChainTransaction] = {}
        self.receipts: Dict[str, TransactionReceipt] = {}
        self.broadcasts: List[Dict[str, Any]] = []
        self.broadcast_error: Optional[Exception] = None
        self.lookup_error: Optional[Exception] = None
        self.fee_error: Optional[Exception] = None
        self.replacements: Dict[tuple, str] = {}
        self.lookup_calls = 0

    async def get_nonce(self, address: str) -> int:
        return self.pending_counts.get(address.lower(), 0)

    async def get_fee_data(self) -> FeeData:
        if self.fee_error is not None:
            raise self.fee_error
        return self.fee_data

    async def broadcast(self, signed_payload: str) -> str:
        if self.broadcast_error is not None:
            raise self.broadcast_error
        payload = json.loads(signed_payload)
        tx_hash = "0x" + hashlib.sha256(signed_payload.encode()).hexdigest()
        nonce = int(payload["nonce"], 16)
        sender = payload["from"].lower()
        self.pending_counts[sender] = max(self.pending_counts.get(sender, 0), nonce + 1)
        self.transactions[tx_hash] = ChainTransaction(hash=tx_hash, nonce=nonce)
        self.broadcasts.append(payload)
        return tx_hash

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[ChainTransaction]:
        self.lookup_calls += 1
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.transactions.get(tx_hash)

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        return self.receipts.get(tx_hash)

    async def get_latest_block_number(self) -> int:
        return self.latest_block

    async def find_replacement(self, address: str, nonce: int) -> Optional[str]:
        return self.replacements.get((address.lower(), nonce))

    # Test controls
    def include(self, tx_hash: str, block_number: Optional[int] = None) -> None:
        """Put a transaction in a block without a receipt yet."""
        current = self.transactions[tx_hash]
        self.transactions[tx_hash] = ChainTransaction(
            hash=tx_hash,
            nonce=current.nonce,
            block_number=block_number or self.latest_block,
            block_hash=f"0xblock{block_number or self.latest_block}",
        )

    def mine(
        self,
        tx_hash: str,
        *,
        block_number: Optional[int] = None,
        success: bool = True,
        gas_used: int = 21000,
        effective_gas_price: int = 20 * GWEI,
    ) -> None:
        block_number = block_number or self.latest_block
        self.include(tx_hash, block_number)
        self.receipts[tx_hash] = TransactionReceipt(
            hash=tx_hash,
            block_number=block_number,
            block_hash=f"0xblock{block_number}",
            success=success,
            gas_used=gas_used,
            effective_gas_price=effective_gas_price,
        )

    def forget(self, tx_hash: str) -> None:
        """Drop a transaction from the node's view."""
        self.transactions.pop(tx_hash, None)
        self.receipts.pop(tx_hash, None)


class FakeProvider(ProviderAdapter):
    """ProviderAdapter with scripted quotes and statuses.

    ``output_ratio`` scales the input amount into the quoted output;
    ``delay`` makes ``quote`` sleep (for timeout tests).
    """

    def __init__(
        self,
        provider_id: str,
        *,
        kinds=(StepKind.BRIDGE,),
        chains=("ethereum", "base", "arbitrum"),
        assets=("ETH", "USDC", "USDT", "DAI"),
        cross_chain_swaps: bool = False,
        output_ratio: Decimal = Decimal("1"),
        fee_usd: Decimal = Decimal("1"),
        eta_minutes: int = 10,
        delay: float = 0,
        quote_error: Optional[Exception] = None,
        execute_error: Optional[Exception] = None,
        deposit: Optional[Dict[str, Any]] = None,
        min_amount: Optional[Dict[str, Decimal]] = None,
        max_amount: Optional[Dict[str, Decimal]] = None,
    ):
        self.id = provider_id
        self.name = provider_id.title()
        self.capabilities = ProviderCapabilities(
            kinds=frozenset(kinds),
            supported_chains=frozenset(chains),
            supported_assets={chain: frozenset(assets) for chain in chains},
            min_amount=min_amount or {},
            max_amount=max_amount or {},
            cross_chain_swaps=cross_chain_swaps,
            estimated_minutes=eta_minutes,
        )
        self.output_ratio = Decimal(output_ratio)
        self.fee_usd = Decimal(fee_usd)
        self.eta_minutes = eta_minutes
        self.delay = delay
        self.quote_error = quote_error
        self.execute_error = execute_error
        self.deposit = deposit
        self.quote_requests: List[QuoteRequest] = []
        self.execute_requests: List[ExecuteRequest] = []
        self.statuses: List[ProviderStatus] = []
        self.status_calls = 0
        self.to_asset_override: Optional[str] = None

    async def quote(self, request: QuoteRequest) -> List[ProviderQuote]:
        self.quote_requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.quote_error is not None:
            raise self.quote_error
        return [
            ProviderQuote(
                provider_id=self.id,
                kind=request.kind,
                from_chain=request.from_chain,
                to_chain=request.to_chain,
                from_asset=request.from_asset,
                to_asset=self.to_asset_override or request.to_asset,
                from_amount=request.amount,
                to_amount=request.amount * self.output_ratio,
                fee_usd=self.fee_usd,
                eta_minutes=self.eta_minutes,
                quote_id=f"{self.id}-quote-{len(self.quote_requests)}",
            )
        ]

    async def execute(self, request: ExecuteRequest) -> ProviderTxRef:
        self.execute_requests.append(request)
        if self.execute_error is not None:
            raise self.execute_error
        return ProviderTxRef(
            provider_id=self.id,
            ref_id=f"{self.id}-ref-{len(self.execute_requests)}",
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            to_asset=request.to_asset,
            deposit=self.deposit,
            expected_output=request.amount * self.output_ratio,
        )

    async def status(self, ref: ProviderTxRef) -> ProviderStatus:
        self.status_calls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        if self.statuses:
            return self.statuses[0]
        return ProviderStatus(state=ProviderState.PENDING)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> Scheduler:
    return Scheduler(clock=clock)


@pytest.fixture
def eth_client() -> FakeChainClient:
    return FakeChainClient("ethereum")


@pytest.fixture
def base_client() -> FakeChainClient:
    return FakeChainClient("base", fee_data=FeeData(gas_price=GWEI // 10))


@pytest.fixture
def chain_clients(eth_client: FakeChainClient, base_client: FakeChainClient) -> Dict[str, FakeChainClient]:
    return {"ethereum": eth_client, "base": base_client}


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def price_oracle() -> StaticPriceOracle:
    return StaticPriceOracle({"ETH": Decimal("2000")})


@pytest.fixture
def gas_estimator(chain_clients, price_oracle) -> GasEstimator:
    return GasEstimator(chain_clients, price_oracle)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def state_machine(chain_clients, signer, gas_estimator, events, store, clock) -> TransactionStateMachine:
    return TransactionStateMachine(
        chain_clients,
        signer,
        gas_estimator,
        events=events,
        store=store,
        clock=clock,
    )


@pytest.fixture
def recorded_events(events: EventBus) -> List[tuple]:
    """Every emitted (event, entity) pair, in order."""
    seen: List[tuple] = []
    events.subscribe(None, lambda event, entity: seen.append((event, entity)))
    return seen


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def make_chain_client() -> Callable[..., FakeChainClient]:
    return FakeChainClient


@pytest.fixture
def sender() -> str:
    return SENDER


@pytest.fixture
def recipient() -> str:
    return RECIPIENT
