"""
Unsigned EVM payloads handed to the Signer.
"""

from typing import Any, Dict, Optional

from ...chains.metadata import (
    CHAIN_METADATA,
    asset_address,
    asset_decimals,
    is_native_asset,
    to_base_units,
)
from ..errors import InvalidRequest
from .models import Transaction

ERC20_TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    addr = address.lower().replace("0x", "")
    return addr.zfill(64)


def encode_erc20_transfer(to_address: str, amount: int) -> str:
    return ERC20_TRANSFER_SELECTOR + _encode_address(to_address) + _encode_uint256(amount)


def _is_native(tx: Transaction) -> bool:
    if tx.chain not in CHAIN_METADATA:
        # Custom chains only carry native transfers unless calldata is supplied
        return True
    return is_native_asset(tx.chain, tx.asset)


def check_transferable(tx: Transaction) -> None:
    """Raise InvalidRequest when no payload can be built for ``tx``."""
    if tx.data is None and not _is_native(tx) and not asset_address(tx.chain, tx.asset):
        raise InvalidRequest(f"Unknown asset {tx.asset} on {tx.chain}")


def build_unsigned_payload(tx: Transaction) -> Dict[str, Any]:
    """Serialize ``tx`` into the dict the Signer signs.

    Token transfers target the token contract with ``transfer`` calldata;
    contract calls carry their own calldata and raw value.
    """
    to_address = tx.to_address
    data: Optional[str] = tx.data
    decimals = asset_decimals(tx.chain, tx.asset) if tx.chain in CHAIN_METADATA else 18

    if tx.value_override is not None:
        value = tx.value_override
    elif data is not None:
        value = to_base_units(tx.amount, decimals) if _is_native(tx) else 0
    elif _is_native(tx):
        value = to_base_units(tx.amount, decimals)
    else:
        token = asset_address(tx.chain, tx.asset)
        if token is None:
            raise InvalidRequest(f"Unknown asset {tx.asset} on {tx.chain}")
        data = encode_erc20_transfer(tx.to_address, to_base_units(tx.amount, decimals))
        to_address = token
        value = 0

    payload: Dict[str, Any] = {
        "from": tx.from_address.lower(),
        "to": to_address.lower(),
        "data": data or "0x",
        "value": hex(value),
        "nonce": hex(tx.nonce),
        "gas": hex(tx.fee.gas_limit),
    }
    chain_id = CHAIN_METADATA.get(tx.chain, {}).get("chain_id")
    if chain_id is not None:
        payload["chainId"] = hex(chain_id)
    if tx.fee.is_eip1559:
        payload["type"] = "0x2"
        payload["maxFeePerGas"] = hex(tx.fee.max_fee_per_gas)
        payload["maxPriorityFeePerGas"] = hex(tx.fee.max_priority_fee_per_gas)
    else:
        payload["type"] = "0x0"
        payload["gasPrice"] = hex(tx.fee.gas_price)
    return payload
