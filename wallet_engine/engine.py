"""
Wallet engine wiring.

One WalletEngine owns every component of a wallet instance: fee estimation,
the transaction state machine and its pending monitor, provider registry,
route engine and cross-chain tracker. Nothing is held at module level.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping, Optional, Union

from .chains.base import ChainClient, Signer
from .chains.evm import EvmRpcClient
from .config import settings
from .core.crosschain import CrosschainTransaction, CrosschainTransactionTracker
from .core.events import EngineEvent, EventBus, EventHandler
from .core.gas import GasEstimator, chain_key
from .core.routing import Route, RouteEngine, RouteRequest
from .core.store import InMemoryStore, Store
from .core.transactions import (
    NonceManager,
    PendingTransactionMonitor,
    PendingTransactionRegistry,
    Transaction,
    TransactionStateMachine,
    TransferRequest,
)
from .logging_config import setup_logging
from .providers.base import ProviderAdapter
from .providers.bungee import BungeeAdapter
from .providers.prices import CoingeckoPriceOracle, PriceOracle
from .providers.registry import ProviderRegistry
from .providers.relay import RelayAdapter
from .runtime.scheduler import Clock, Scheduler, SystemClock

logger = logging.getLogger(__name__)


class WalletEngine:
    """Constructs and owns the engine components for one wallet."""

    def __init__(
        self,
        chain_clients: Mapping[str, ChainClient],
        signer: Signer,
        *,
        providers: Union[ProviderRegistry, Iterable[ProviderAdapter], None] = None,
        price_oracle: Optional[PriceOracle] = None,
        store: Optional[Store] = None,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.chain_clients = {chain_key(name): client for name, client in chain_clients.items()}
        self.clock = clock or SystemClock()
        self.store = store or InMemoryStore()
        self.events = events or EventBus()
        self.scheduler = Scheduler(clock=self.clock)

        if isinstance(providers, ProviderRegistry):
            self.providers = providers
        else:
            self.providers = ProviderRegistry(list(providers or []))

        self.gas = GasEstimator(self.chain_clients, price_oracle)
        self.registry = PendingTransactionRegistry()
        self.nonces = NonceManager(self.chain_clients)
        self.transactions = TransactionStateMachine(
            self.chain_clients,
            signer,
            self.gas,
            registry=self.registry,
            nonce_manager=self.nonces,
            events=self.events,
            store=self.store,
            clock=self.clock,
        )
        self.monitor = PendingTransactionMonitor(self.transactions, self.scheduler)
        self.routes = RouteEngine(self.providers, self.gas)
        self.tracker = CrosschainTransactionTracker(
            self.transactions,
            self.providers,
            self.scheduler,
            events=self.events,
            store=self.store,
            clock=self.clock,
        )
        self._started = False

    @classmethod
    def from_settings(
        cls,
        signer: Signer,
        *,
        store: Optional[Store] = None,
        providers: Union[ProviderRegistry, Iterable[ProviderAdapter], None] = None,
        configure_logging: bool = False,
    ) -> "WalletEngine":
        """Engine with an EVM RPC client per configured ``rpc_urls`` entry and the bundled adapters.

        ``configure_logging`` installs the structlog handler on the
        ``wallet_engine`` loggers only, at ``settings.log_level``.
        """
        if configure_logging:
            setup_logging(settings.log_level, root=False)
        clients = {name: EvmRpcClient(name, url) for name, url in settings.rpc_urls.items()}
        if providers is None:
            providers = [RelayAdapter(), BungeeAdapter()]
        oracle = CoingeckoPriceOracle() if settings.enable_coingecko else None
        return cls(clients, signer, providers=providers, price_oracle=oracle, store=store)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    @property
    def is_running(self) -> bool:
        return self._started

    async def load(self) -> None:
        """Restore persisted transactions and cross-chain records."""
        pending = await self.transactions.load()
        active = await self.tracker.load()
        logger.info("Engine restored %d pending transactions and %d active routes", pending, active)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.monitor.start()
        self.tracker.start()
        logger.info("Wallet engine started for chains: %s", ", ".join(sorted(self.chain_clients)))

    async def stop(self) -> None:
        self._started = False
        self.monitor.stop()
        self.tracker.stop()
        await self.scheduler.stop_all()
        for client in self.chain_clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        logger.info("Wallet engine stopped")

    async def __aenter__(self) -> "WalletEngine":
        await self.load()
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ---------------------------
    # Facade
    # ---------------------------
    def subscribe(self, event: Optional[EngineEvent], handler: EventHandler) -> Callable[[], None]:
        return self.events.subscribe(event, handler)

    async def send(self, request: TransferRequest) -> Transaction:
        return await self.transactions.send(request)

    async def cancel(self, tx_id: str) -> Transaction:
        return await self.transactions.cancel(tx_id)

    async def speed_up(self, tx_id: str) -> Transaction:
        return await self.transactions.speed_up(tx_id)

    async def find_routes(self, request: RouteRequest) -> list:
        return await self.routes.find_routes(request)

    async def execute_route(
        self,
        route: Route,
        from_address: str,
        recipient: Optional[str] = None,
    ) -> CrosschainTransaction:
        return await self.tracker.execute(route, from_address, recipient)
