"""
Shared fixtures: an in-memory chain and deterministic settings.

FakeGateway decodes every userCmd payload with decode_swap and applies
it to in-memory balances, so tests exercise the real encoding path.
"""

import random
from pathlib import Path
import sys

import pytest
from eth_account import Account
from web3 import Web3

sys.path.insert(0, str(Path(__file__).parent.parent))

from ambient_volume.config import Settings, Tunables
from ambient_volume.encoding import NATIVE_TOKEN, decode_swap
from ambient_volume.gateway import ChainGateway, NetworkInfo, Receipt, TokenInfo
from ambient_volume.wallet import create_session


USDC = "0x06efdbff2a14a7c8e15944d1f4a48f9f95f663a4"
USDT = "0xf55bec9cafdbe8730f096aa55dad6d22d44099df"
DEX = "0xaaaaaaaacb71bf2c8cae522ea5fa455571a74106"

KEYS = ["0x" + "11" * 32, "0x" + "22" * 32, "0x" + "33" * 32]

ETH = 10**18
STABLE = 10**6


def make_env(**overrides):
    env = {
        "RPC_URL": "http://localhost:8545",
        "PRIVATE_KEYS": ",".join(KEYS[:1]),
        "CROC_SWAP_DEX": DEX,
        "USDC_ADDRESS": USDC,
        "USDT_ADDRESS": USDT,
        "TARGET_TOTAL_VOLUME_MIN": "20",
        "TARGET_TOTAL_VOLUME_MAX": "30",
        "SINGLE_SWAP_AMOUNT_MIN": "5",
        "SINGLE_SWAP_AMOUNT_MAX": "10",
        "TIME_INTERVAL_MIN": "1",
        "TIME_INTERVAL_MAX": "2",
        "RESERVE_ETH_MIN": "0.001",
        "RESERVE_ETH_MAX": "0.002",
    }
    env.update(overrides)
    return env


def address_of(key: str) -> str:
    return Account.from_key(key).address


class FakeGateway(ChainGateway):
    """In-memory Ambient dex with a fixed ETH price and 1:1 stables."""

    def __init__(self, eth_price: int = 10000, decimals: int = 6, chain_id: int = 534352,
                 gas_fee_wei: int = 10**12):
        self.eth_price = eth_price
        self.decimals = decimals
        self.chain_id = chain_id
        self.gas_fee_wei = gas_fee_wei
        self.native = {}
        self.tokens = {}
        self.allowances = {}
        self.code = {Web3.to_checksum_address(DEX)}
        self.receipts = {}
        self.swaps = []
        self.approvals = []
        self.user_cmd_error = None
        self.user_cmd_errors = []
        self.revert_swaps = False
        self.failing_owners = set()
        self._tx_count = 0

    # Test setup helpers

    def fund(self, owner: str, eth: float = 0.0, usdc: float = 0.0, usdt: float = 0.0):
        owner = Web3.to_checksum_address(owner)
        self.native[owner] = int(eth * ETH)
        self.tokens[(Web3.to_checksum_address(USDC), owner)] = int(usdc * STABLE)
        self.tokens[(Web3.to_checksum_address(USDT), owner)] = int(usdt * STABLE)

    def stable(self, token: str, owner: str) -> float:
        key = (Web3.to_checksum_address(token), Web3.to_checksum_address(owner))
        return self.tokens.get(key, 0) / STABLE

    @property
    def native_swaps(self):
        return [cmd for cmd in self.swaps if cmd.base == NATIVE_TOKEN]

    def _next_hash(self) -> str:
        self._tx_count += 1
        return "0x" + f"{self._tx_count:064x}"

    def _check_owner(self, owner: str):
        if Web3.to_checksum_address(owner) in self.failing_owners:
            raise OSError("connection reset by peer")

    def _charge(self, owner: str):
        self.native[owner] = self.native.get(owner, 0) - self.gas_fee_wei

    # ChainGateway

    async def network(self) -> NetworkInfo:
        return NetworkInfo("scroll" if self.chain_id == 534352 else "unknown", self.chain_id, 1234)

    async def has_code(self, address: str) -> bool:
        return Web3.to_checksum_address(address) in self.code

    async def native_balance(self, address: str) -> int:
        self._check_owner(address)
        return self.native.get(Web3.to_checksum_address(address), 0)

    async def token_balance(self, token: str, owner: str) -> int:
        self._check_owner(owner)
        key = (Web3.to_checksum_address(token), Web3.to_checksum_address(owner))
        return self.tokens.get(key, 0)

    async def token_allowance(self, token: str, owner: str, spender: str) -> int:
        key = (Web3.to_checksum_address(token), Web3.to_checksum_address(owner))
        return self.allowances.get(key, 0)

    async def token_info(self, token: str) -> TokenInfo:
        token = Web3.to_checksum_address(token)
        symbol = "USDC" if token == Web3.to_checksum_address(USDC) else "USDT"
        return TokenInfo(token, f"{symbol} Stablecoin", symbol, self.decimals)

    async def token_decimals(self, token: str) -> int:
        return self.decimals

    async def approve(self, signer, token, spender, amount, gas) -> str:
        key = (Web3.to_checksum_address(token), signer.address)
        self.allowances[key] = amount
        self.approvals.append((Web3.to_checksum_address(token), signer.address))
        self._charge(signer.address)
        tx_hash = self._next_hash()
        self.receipts[tx_hash] = 1
        return tx_hash

    async def user_cmd(self, signer, dex, callpath, payload, gas, value=0) -> str:
        if self.user_cmd_errors:
            raise self.user_cmd_errors.pop(0)
        if self.user_cmd_error is not None:
            raise self.user_cmd_error

        cmd = decode_swap(payload)
        self.swaps.append(cmd)
        owner = signer.address
        tx_hash = self._next_hash()
        self._charge(owner)

        if self.revert_swaps:
            self.receipts[tx_hash] = 0
            return tx_hash

        token_in, token_out = (cmd.base, cmd.quote) if cmd.is_buy else (cmd.quote, cmd.base)

        if token_in == NATIVE_TOKEN:
            assert value == cmd.qty
            self.native[owner] -= cmd.qty
            out = cmd.qty * self.eth_price * 10**self.decimals // ETH
        else:
            key_in = (token_in, owner)
            if self.tokens.get(key_in, 0) < cmd.qty or self.allowances.get(key_in, 0) < cmd.qty:
                self.receipts[tx_hash] = 0
                return tx_hash
            self.tokens[key_in] -= cmd.qty
            out = cmd.qty

        key_out = (token_out, owner)
        self.tokens[key_out] = self.tokens.get(key_out, 0) + out
        self.receipts[tx_hash] = 1
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> Receipt:
        return Receipt(tx_hash=tx_hash, status=self.receipts[tx_hash], block_number=1235, gas_used=150000)


async def no_pause(seconds: float):
    return None


@pytest.fixture
def env():
    return make_env()


@pytest.fixture
def settings():
    return Settings.from_env(make_env())


@pytest.fixture
def tunables():
    return Tunables()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def session(settings, tunables):
    return create_session(0, KEYS[0], settings, tunables, random.Random(42))
