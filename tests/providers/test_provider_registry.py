"""
Tests for ProviderRegistry, ProviderCapabilities and status normalization.
"""

from decimal import Decimal

import pytest

from wallet_engine.providers.base import (
    ProviderCapabilities,
    ProviderState,
    ProviderTxRef,
    QuoteRequest,
    StepKind,
    map_provider_state,
)
from wallet_engine.providers.common import parse_int, sum_usd, to_decimal
from wallet_engine.providers.registry import ProviderRegistry


def bridge_request(**overrides) -> QuoteRequest:
    values = dict(
        kind=StepKind.BRIDGE,
        from_chain="ethereum",
        to_chain="base",
        from_asset="USDC",
        to_asset="USDC",
        amount=Decimal("100"),
    )
    values.update(overrides)
    return QuoteRequest(**values)


class TestProviderRegistry:
    """Tests for registration and lookup."""

    def test_registration_order_is_kept(self, make_provider):
        registry = ProviderRegistry([make_provider("b"), make_provider("a")])

        assert [adapter.id for adapter in registry] == ["b", "a"]
        assert len(registry) == 2

    def test_duplicate_id_rejected(self, make_provider):
        registry = ProviderRegistry([make_provider("a")])

        with pytest.raises(ValueError):
            registry.register(make_provider("a"))

    def test_get_and_unregister(self, make_provider):
        adapter = make_provider("a")
        registry = ProviderRegistry([adapter])

        assert registry.get("a") is adapter
        registry.unregister("a")
        assert registry.get("a") is None

    def test_capable_filters_by_capability(self, make_provider):
        bridge = make_provider("bridge")
        dex = make_provider("dex", kinds=(StepKind.SWAP,))
        registry = ProviderRegistry([bridge, dex])

        assert registry.capable(bridge_request()) == [bridge]
        assert registry.capable(bridge_request(kind=StepKind.SWAP, to_chain="ethereum", to_asset="DAI")) == [dex]
        assert registry.with_kind(StepKind.SWAP) == [dex]


class TestProviderCapabilities:
    """Tests for the static pre-filter."""

    @pytest.fixture
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            kinds=frozenset({StepKind.BRIDGE, StepKind.SWAP}),
            supported_chains=frozenset({"ethereum", "base"}),
            supported_assets={"ethereum": frozenset({"USDC", "ETH"}), "base": frozenset({"USDC"})},
            min_amount={"USDC": Decimal("10")},
            max_amount={"USDC": Decimal("1000")},
        )

    def test_supported_request(self, capabilities):
        assert capabilities.can_quote(StepKind.BRIDGE, "ethereum", "base", "usdc", "USDC", Decimal("100"))

    def test_amount_bounds(self, capabilities):
        assert not capabilities.can_quote(StepKind.BRIDGE, "ethereum", "base", "USDC", "USDC", Decimal("5"))
        assert not capabilities.can_quote(StepKind.BRIDGE, "ethereum", "base", "USDC", "USDC", Decimal("5000"))

    def test_unsupported_asset_on_target(self, capabilities):
        assert not capabilities.can_quote(StepKind.BRIDGE, "ethereum", "base", "ETH", "ETH", Decimal("1"))

    def test_cross_chain_swap_requires_flag(self, capabilities):
        assert not capabilities.can_quote(StepKind.SWAP, "ethereum", "base", "ETH", "USDC", Decimal("1"))
        assert capabilities.can_quote(StepKind.SWAP, "ethereum", "ethereum", "ETH", "USDC", Decimal("1"))


class TestNormalization:
    """Tests for provider status and number parsing."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("success", ProviderState.COMPLETED),
            ("DONE", ProviderState.COMPLETED),
            ("in progress", ProviderState.PROCESSING),
            ("refund", ProviderState.FAILED),
            ("canceled", ProviderState.REJECTED),
            ("waiting", ProviderState.PENDING),
            ("something-new", ProviderState.PENDING),
            (None, ProviderState.PENDING),
        ],
    )
    def test_map_provider_state(self, raw, expected):
        assert map_provider_state(raw) == expected

    def test_terminal_states(self):
        assert ProviderState.COMPLETED.is_terminal
        assert ProviderState.REJECTED.is_terminal
        assert not ProviderState.PROCESSING.is_terminal

    def test_parse_int(self):
        assert parse_int("0x10") == 16
        assert parse_int("42") == 42
        assert parse_int(None) == 0
        assert parse_int(7) == 7

    def test_to_decimal(self):
        assert to_decimal("1500000", 6) == Decimal("1.5")
        assert to_decimal("garbage", 6) is None
        assert to_decimal(None, 6) is None

    def test_sum_usd_skips_bad_values(self):
        assert sum_usd(["1.5", None, "oops", 2]) == Decimal("3.5")

    def test_tx_ref_round_trip(self):
        ref = ProviderTxRef(
            provider_id="relay",
            ref_id="0xrequest",
            from_chain="ethereum",
            to_chain="base",
            to_asset="USDC",
            deposit={"to": "0x44", "data": "0x", "value": "0"},
            expected_output=Decimal("99.5"),
        )

        assert ProviderTxRef.from_dict(ref.to_dict()) == ref
