"""
Nonce management for concurrent transactions.

Hands out nonces per (chain, sender) so that concurrently built transactions
never collide, seeded from the chain client's pending-inclusive count.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Set

from ...chains.base import ChainClient
from ..errors import UnsupportedChain


@dataclass
class NonceState:
    """Tracks nonce state for an address on a chain."""
    address: str
    chain: str
    confirmed_nonce: int                        # Next nonce the chain expects after confirmations
    pending_nonce: int                          # Next available for use
    reserved_nonces: Set[int] = field(default_factory=set)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NonceManager:
    """
    Manages nonces for concurrent transaction building.

    - Syncs with the chain's pending-inclusive count before every reservation
    - Never hands out a nonce another in-flight build already holds
    - Releases nonces of transactions that never reached the network
    """

    def __init__(self, chain_clients: Mapping[str, ChainClient]):
        self._clients = chain_clients
        self._states: Dict[str, NonceState] = {}  # key: "{chain}:{address}"
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_key(self, chain: str, address: str) -> str:
        return f"{chain}:{address.lower()}"

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _fetch_on_chain_nonce(self, chain: str, address: str) -> int:
        client = self._clients.get(chain)
        if client is None:
            raise UnsupportedChain(chain)
        return await client.get_nonce(address)

    async def get_next_nonce(self, chain: str, address: str, sync: bool = True) -> int:
        """
        Reserve and return the next available nonce for an address.

        Args:
            chain: Canonical chain name
            address: The sender address
            sync: Whether to sync with on-chain state first
        """
        key = self._get_key(chain, address)

        async with self._get_lock(key):
            if key not in self._states or sync:
                on_chain_nonce = await self._fetch_on_chain_nonce(chain, address)

                if key not in self._states:
                    self._states[key] = NonceState(
                        address=address.lower(),
                        chain=chain,
                        confirmed_nonce=on_chain_nonce,
                        pending_nonce=on_chain_nonce,
                    )
                else:
                    # Update confirmed nonce, but don't decrease pending
                    state = self._states[key]
                    state.confirmed_nonce = max(state.confirmed_nonce, on_chain_nonce)
                    if on_chain_nonce > state.pending_nonce:
                        state.pending_nonce = on_chain_nonce
                    state.reserved_nonces = {n for n in state.reserved_nonces if n >= on_chain_nonce}
                    state.last_updated = datetime.now(timezone.utc)

            state = self._states[key]

            nonce = state.pending_nonce
            while nonce in state.reserved_nonces:
                nonce += 1

            state.reserved_nonces.add(nonce)
            state.pending_nonce = nonce + 1

            return nonce

    async def reserve(self, chain: str, address: str, nonce: int) -> None:
        """Mark an explicitly chosen or restored nonce as in use."""
        key = self._get_key(chain, address)

        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None:
                state = NonceState(
                    address=address.lower(),
                    chain=chain,
                    confirmed_nonce=nonce,
                    pending_nonce=nonce,
                )
                self._states[key] = state
            state.reserved_nonces.add(nonce)
            if nonce >= state.pending_nonce:
                state.pending_nonce = nonce + 1

    async def release_nonce(self, chain: str, address: str, nonce: int) -> None:
        """
        Release a reserved nonce (transaction failed before reaching the network).
        """
        key = self._get_key(chain, address)

        async with self._get_lock(key):
            if key in self._states:
                state = self._states[key]
                state.reserved_nonces.discard(nonce)

                # If we released the highest nonce, we can reduce pending
                if nonce == state.pending_nonce - 1:
                    while state.pending_nonce > state.confirmed_nonce:
                        if state.pending_nonce - 1 not in state.reserved_nonces:
                            state.pending_nonce -= 1
                        else:
                            break

    async def confirm_nonce(self, chain: str, address: str, nonce: int) -> None:
        """
        Mark a nonce as confirmed (a transaction at this nonce was included).
        """
        key = self._get_key(chain, address)

        async with self._get_lock(key):
            if key in self._states:
                state = self._states[key]
                state.reserved_nonces.discard(nonce)

                if nonce >= state.confirmed_nonce:
                    state.confirmed_nonce = nonce + 1
                if state.pending_nonce < state.confirmed_nonce:
                    state.pending_nonce = state.confirmed_nonce

    def get_state(self, chain: str, address: str) -> Optional[NonceState]:
        return self._states.get(self._get_key(chain, address))
