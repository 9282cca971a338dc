"""
Swap Command Encoding
=====================

Encodes swaps for the CrocSwap (Ambient) dex ``userCmd`` entry point.

Callpath 1 is the hot-path swap. Its payload is::

    abi.encode(address base, address quote, uint256 poolIdx,
               bool isBuy, bool inBaseQty, uint128 qty, uint16 tip,
               uint128 limitPrice, uint128 minOut, uint8 reserveFlags)

``base`` is always the lower of the two token addresses, and native ETH is
the zero address, so it is always the base side. ``isBuy`` means the trader
pays base and receives quote.
"""

from dataclasses import dataclass
from typing import Tuple

from eth_abi import decode, encode
from web3 import Web3

NATIVE_TOKEN = "0x0000000000000000000000000000000000000000"

SWAP_TYPES = [
    'address', 'address', 'uint256', 'bool', 'bool',
    'uint128', 'uint16', 'uint128', 'uint128', 'uint8',
]

# Price limits are sqrt prices in Q64.64 fixed point
MIN_SQRT_PRICE = 65538
MAX_SQRT_PRICE = 0xffff5433e2b3d8211706e6102aa9472
MIN_LIMIT_PRICE = MIN_SQRT_PRICE - 1
MAX_LIMIT_PRICE = MAX_SQRT_PRICE - 1

MAX_UINT128 = 2**128 - 1


@dataclass(frozen=True)
class SwapCommand:
    """Decoded form of a callpath-1 swap payload."""
    base: str
    quote: str
    pool_idx: int
    is_buy: bool
    in_base_qty: bool
    qty: int
    tip: int
    limit_price: int
    min_out: int
    reserve_flags: int

    def as_tuple(self) -> Tuple:
        return (
            self.base, self.quote, self.pool_idx, self.is_buy, self.in_base_qty,
            self.qty, self.tip, self.limit_price, self.min_out, self.reserve_flags,
        )


def order_pair(token_a: str, token_b: str) -> Tuple[str, str]:
    """Return (base, quote) for a token pair."""
    a = Web3.to_checksum_address(token_a)
    b = Web3.to_checksum_address(token_b)
    if a == b:
        raise ValueError("A pool needs two distinct tokens")
    if int(a, 16) < int(b, 16):
        return a, b
    return b, a


def build_swap(
    token_in: str,
    token_out: str,
    qty: int,
    pool_idx: int,
    limit_offset: int = 0,
    min_out: int = 0,
) -> SwapCommand:
    """
    Build a fixed-input swap paying ``qty`` of ``token_in``.

    Args:
        token_in: Token paid (the zero address for native ETH)
        token_out: Token received
        qty: Amount of token_in in base units
        pool_idx: Pool type index
        limit_offset: Added to the minimum limit price when paying quote.
            The limit is effectively unbounded either way; the offset only
            varies the calldata.
        min_out: Minimum acceptable output
    """
    if qty <= 0 or qty > MAX_UINT128:
        raise ValueError(f"Swap quantity out of range: {qty}")

    base, quote = order_pair(token_in, token_out)
    pays_base = base == Web3.to_checksum_address(token_in)

    if pays_base:
        limit_price = MAX_LIMIT_PRICE
    else:
        limit_price = MIN_LIMIT_PRICE + max(0, limit_offset)

    return SwapCommand(
        base=base,
        quote=quote,
        pool_idx=pool_idx,
        is_buy=pays_base,
        in_base_qty=pays_base,
        qty=qty,
        tip=0,
        limit_price=limit_price,
        min_out=min_out,
        reserve_flags=0,
    )


def encode_swap(command: SwapCommand) -> bytes:
    """ABI-encode a swap command for ``userCmd``."""
    return encode(SWAP_TYPES, list(command.as_tuple()))


def decode_swap(payload: bytes) -> SwapCommand:
    """Decode a callpath-1 payload back into a SwapCommand."""
    values = decode(SWAP_TYPES, payload)
    base, quote = (Web3.to_checksum_address(values[0]), Web3.to_checksum_address(values[1]))
    return SwapCommand(base, quote, *values[2:])
