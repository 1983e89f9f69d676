"""Chain and token metadata shared by fee estimation, routing and adapters."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from ..core.errors import UnsupportedChain

NATIVE_PLACEHOLDER = '0x0000000000000000000000000000000000000000'

# Keyed by canonical chain name. `fallback_gas` is the native cost of a plain
# transfer per tier, used when live fee data is unavailable.
CHAIN_METADATA: Dict[str, Dict[str, Any]] = {
    'ethereum': {
        'name': 'Ethereum',
        'chain_id': 1,
        'aliases': ['ethereum', 'eth', 'mainnet', 'ethereum mainnet', 'l1'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'eip1559': True,
        'fallback_gas': {'slow': '0.001', 'average': '0.0015', 'fast': '0.002'},
    },
    'base': {
        'name': 'Base',
        'chain_id': 8453,
        'aliases': ['base', 'base mainnet'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'eip1559': True,
        'fallback_gas': {'slow': '0.00001', 'average': '0.000015', 'fast': '0.00002'},
    },
    'arbitrum': {
        'name': 'Arbitrum',
        'chain_id': 42161,
        'aliases': ['arbitrum', 'arb', 'arbitrum one'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'eip1559': True,
        'fallback_gas': {'slow': '0.00002', 'average': '0.00003', 'fast': '0.00004'},
    },
    'optimism': {
        'name': 'Optimism',
        'chain_id': 10,
        'aliases': ['optimism', 'op'],
        'native_symbol': 'ETH',
        'native_decimals': 18,
        'eip1559': True,
        'fallback_gas': {'slow': '0.00001', 'average': '0.000015', 'fast': '0.00002'},
    },
    'polygon': {
        'name': 'Polygon',
        'chain_id': 137,
        'aliases': ['polygon', 'matic', 'matic pos'],
        'native_symbol': 'MATIC',
        'native_decimals': 18,
        'eip1559': True,
        'fallback_gas': {'slow': '0.002', 'average': '0.003', 'fast': '0.005'},
    },
    'bsc': {
        'name': 'BNB Smart Chain',
        'chain_id': 56,
        'aliases': ['bsc', 'bnb', 'binance smart chain', 'bnb chain'],
        'native_symbol': 'BNB',
        'native_decimals': 18,
        'eip1559': False,
        'fallback_gas': {'slow': '0.00005', 'average': '0.0001', 'fast': '0.00015'},
    },
}

CHAIN_ALIAS_TO_NAME: Dict[str, str] = {
    alias: name
    for name, details in CHAIN_METADATA.items()
    for alias in details.get('aliases', [])
}

CHAIN_ID_TO_NAME: Dict[int, str] = {
    details['chain_id']: name for name, details in CHAIN_METADATA.items()
}


def _native(symbol: str) -> Dict[str, Any]:
    return {'symbol': symbol, 'address': NATIVE_PLACEHOLDER, 'decimals': 18, 'is_native': True}


def _erc20(symbol: str, address: str, decimals: int) -> Dict[str, Any]:
    return {'symbol': symbol, 'address': address, 'decimals': decimals, 'is_native': False}


# Chain name -> token symbol -> metadata. Addresses lowercased.
TOKEN_REGISTRY: Dict[str, Dict[str, Dict[str, Any]]] = {
    'ethereum': {
        'ETH': _native('ETH'),
        'WETH': _erc20('WETH', '0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2', 18),
        'USDC': _erc20('USDC', '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48', 6),
        'USDT': _erc20('USDT', '0xdac17f958d2ee523a2206206994597c13d831ec7', 6),
        'DAI': _erc20('DAI', '0x6b175474e89094c44da98b954eedeac495271d0f', 18),
        'WBTC': _erc20('WBTC', '0x2260fac5e5542a773aa44fbcfedf7c193bc2c599', 8),
    },
    'base': {
        'ETH': _native('ETH'),
        'WETH': _erc20('WETH', '0x4200000000000000000000000000000000000006', 18),
        'USDC': _erc20('USDC', '0x833589fcd6edb6e08f4c7c32d4f71b54bda02913', 6),
        'USDT': _erc20('USDT', '0xfde4c96c8593536e31f229ea8f37b2ada2699bb2', 6),
    },
    'arbitrum': {
        'ETH': _native('ETH'),
        'WETH': _erc20('WETH', '0x82af49447d8a07e3bd95bd0d56f35241523fbab1', 18),
        'USDC': _erc20('USDC', '0xaf88d065e77c8cc2239327c5edb3a432268e5831', 6),
        'USDT': _erc20('USDT', '0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9', 6),
    },
    'optimism': {
        'ETH': _native('ETH'),
        'WETH': _erc20('WETH', '0x4200000000000000000000000000000000000006', 18),
        'USDC': _erc20('USDC', '0x0b2c639c533813f4aa9d7837caf62653d097ff85', 6),
        'USDT': _erc20('USDT', '0x94b008aa00579c1307b0ef2c499ad98a8ce58e58', 6),
    },
    'polygon': {
        'MATIC': _native('MATIC'),
        'USDC': _erc20('USDC', '0x3c499c542cef5e3811e1192ce70d8cc03d5c3359', 6),
        'USDT': _erc20('USDT', '0xc2132d05d31c914a87c6611c10748aeb04b58e8f', 6),
    },
    'bsc': {
        'BNB': _native('BNB'),
        'USDC': _erc20('USDC', '0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d', 18),
        'USDT': _erc20('USDT', '0x55d398326f99059ff775485246999027b3197955', 18),
    },
}


def resolve_chain(chain: Union[str, int]) -> str:
    """Return the canonical chain name for a name, alias, or numeric chain id."""

    if isinstance(chain, int):
        name = CHAIN_ID_TO_NAME.get(chain)
        if name is None:
            raise UnsupportedChain(str(chain))
        return name

    key = str(chain).strip().lower()
    if key in CHAIN_METADATA:
        return key
    if key.isdigit() and int(key) in CHAIN_ID_TO_NAME:
        return CHAIN_ID_TO_NAME[int(key)]
    name = CHAIN_ALIAS_TO_NAME.get(key)
    if name is None:
        raise UnsupportedChain(str(chain))
    return name


def chain_info(chain: str) -> Dict[str, Any]:
    return CHAIN_METADATA[resolve_chain(chain)]


def chain_id_for(chain: str) -> int:
    return int(chain_info(chain)['chain_id'])


def native_symbol(chain: str) -> str:
    return str(chain_info(chain)['native_symbol'])


def native_decimals(chain: str) -> int:
    return int(chain_info(chain).get('native_decimals', 18))


def token_info(chain: str, symbol: str) -> Optional[Dict[str, Any]]:
    tokens = TOKEN_REGISTRY.get(resolve_chain(chain), {})
    return tokens.get(symbol.upper())


def is_native_asset(chain: str, symbol: str) -> bool:
    return symbol.upper() == native_symbol(chain).upper()


def asset_decimals(chain: str, symbol: str) -> int:
    info = token_info(chain, symbol)
    if info is not None:
        return int(info['decimals'])
    if is_native_asset(chain, symbol):
        return native_decimals(chain)
    return 18


def asset_address(chain: str, symbol: str) -> Optional[str]:
    info = token_info(chain, symbol)
    return str(info['address']) if info else None


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units, truncating extra precision."""

    try:
        scaled = (Decimal(amount) * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount {amount!r}") from exc
    return int(scaled)


def from_base_units(raw: Union[int, str], decimals: int) -> Decimal:
    return Decimal(int(raw)) / (Decimal(10) ** decimals)
