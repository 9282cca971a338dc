"""
Chain Gateway
=============

The bot talks to the chain only through the ``ChainGateway`` capability
interface: network identity, bytecode presence, ERC20 reads, signed
contract calls and receipt waits. ``Web3Gateway`` is the production
implementation on top of ``web3.AsyncWeb3``.
"""

import abc
import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

from eth_account.signers.local import LocalAccount
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from web3 import AsyncWeb3, Web3

from .errors import GatewayConnectionError
from .utils import logger


# ERC20 Token ABI (minimal)
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"}
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    }
]

# CrocSwap dex entry point
DEX_ABI = [
    {
        "inputs": [
            {"internalType": "uint16", "name": "callpath", "type": "uint16"},
            {"internalType": "bytes", "name": "cmd", "type": "bytes"}
        ],
        "name": "userCmd",
        "outputs": [{"internalType": "bytes", "name": "", "type": "bytes"}],
        "stateMutability": "payable",
        "type": "function"
    }
]

MAX_UINT256 = 2**256 - 1

KNOWN_NETWORKS = {
    1: "mainnet",
    534351: "scroll-sepolia",
    534352: "scroll",
}

# Transport failures worth retrying on read-only calls
_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type((OSError, asyncio.TimeoutError)),
    reraise=True
)


@dataclass(frozen=True)
class NetworkInfo:
    name: str
    chain_id: int
    block_number: int


@dataclass(frozen=True)
class TokenInfo:
    address: str
    name: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class GasParams:
    """Auxiliary transaction parameters; they never change the economic outcome."""
    gas_limit: int
    gas_price_wei: int


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainGateway(abc.ABC):
    """Capability interface the bot needs from a chain client."""

    @abc.abstractmethod
    async def network(self) -> NetworkInfo:
        """Network identity and current block height."""

    @abc.abstractmethod
    async def has_code(self, address: str) -> bool:
        """True if a contract is deployed at address."""

    @abc.abstractmethod
    async def native_balance(self, address: str) -> int:
        """Native balance in wei."""

    @abc.abstractmethod
    async def token_balance(self, token: str, owner: str) -> int:
        """ERC20 balance in base units."""

    @abc.abstractmethod
    async def token_allowance(self, token: str, owner: str, spender: str) -> int:
        """ERC20 allowance in base units."""

    @abc.abstractmethod
    async def token_info(self, token: str) -> TokenInfo:
        """ERC20 name, symbol and decimals."""

    @abc.abstractmethod
    async def token_decimals(self, token: str) -> int:
        """ERC20 decimals."""

    @abc.abstractmethod
    async def approve(self, signer: LocalAccount, token: str, spender: str,
                      amount: int, gas: GasParams) -> str:
        """Submit an ERC20 approval; returns the transaction hash."""

    @abc.abstractmethod
    async def user_cmd(self, signer: LocalAccount, dex: str, callpath: int,
                       payload: bytes, gas: GasParams, value: int = 0) -> str:
        """Submit a dex user command; returns the transaction hash."""

    @abc.abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> Receipt:
        """Block until the transaction is mined."""


class Web3Gateway(ChainGateway):
    """ChainGateway backed by an AsyncWeb3 HTTP provider."""

    def __init__(self, rpc_url: str, timeout: int = 30, receipt_timeout: int = 120,
                 gas_estimate_buffer: float = 1.2):
        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self.gas_estimate_buffer = gas_estimate_buffer
        self.web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": timeout}
        ))
        self._decimals_cache: Dict[str, int] = {}
        self._chain_id: Optional[int] = None

    def _token(self, token: str):
        return self.web3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.web3.eth.chain_id
        return self._chain_id

    @_read_retry
    async def network(self) -> NetworkInfo:
        chain_id = await self.chain_id()
        block_number = await self.web3.eth.block_number
        return NetworkInfo(
            name=KNOWN_NETWORKS.get(chain_id, "unknown"),
            chain_id=chain_id,
            block_number=block_number,
        )

    @_read_retry
    async def has_code(self, address: str) -> bool:
        code = await self.web3.eth.get_code(Web3.to_checksum_address(address))
        return len(code) > 0

    @_read_retry
    async def native_balance(self, address: str) -> int:
        return await self.web3.eth.get_balance(Web3.to_checksum_address(address))

    @_read_retry
    async def token_balance(self, token: str, owner: str) -> int:
        return await self._token(token).functions.balanceOf(
            Web3.to_checksum_address(owner)
        ).call()

    @_read_retry
    async def token_allowance(self, token: str, owner: str, spender: str) -> int:
        return await self._token(token).functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender)
        ).call()

    @_read_retry
    async def token_info(self, token: str) -> TokenInfo:
        contract = self._token(token)
        name = await contract.functions.name().call()
        symbol = await contract.functions.symbol().call()
        # One retry layer per call
        if contract.address not in self._decimals_cache:
            self._decimals_cache[contract.address] = await contract.functions.decimals().call()
        return TokenInfo(contract.address, name, symbol, self._decimals_cache[contract.address])

    @_read_retry
    async def token_decimals(self, token: str) -> int:
        """Cache and return token decimals."""
        key = Web3.to_checksum_address(token)
        if key not in self._decimals_cache:
            self._decimals_cache[key] = await self._token(key).functions.decimals().call()
        return self._decimals_cache[key]

    async def _send(self, signer: LocalAccount, function, gas: GasParams, value: int = 0) -> str:
        """Build, gas-check, sign and broadcast a contract call."""
        tx = await function.build_transaction({
            'from': signer.address,
            'value': value,
            'gas': gas.gas_limit,
            'gasPrice': gas.gas_price_wei,
            'nonce': await self.web3.eth.get_transaction_count(signer.address, 'pending'),
            'chainId': await self.chain_id(),
        })

        # Estimation surfaces contract rejections before anything is broadcast
        estimate_tx = {k: v for k, v in tx.items() if k != 'gas'}
        estimate = await self.web3.eth.estimate_gas(estimate_tx)
        tx['gas'] = max(int(estimate * self.gas_estimate_buffer), gas.gas_limit)

        signed = signer.sign_transaction(tx)
        tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return self.web3.to_hex(tx_hash)

    async def approve(self, signer: LocalAccount, token: str, spender: str,
                      amount: int, gas: GasParams) -> str:
        function = self._token(token).functions.approve(Web3.to_checksum_address(spender), amount)
        return await self._send(signer, function, gas)

    async def user_cmd(self, signer: LocalAccount, dex: str, callpath: int,
                       payload: bytes, gas: GasParams, value: int = 0) -> str:
        contract = self.web3.eth.contract(address=Web3.to_checksum_address(dex), abi=DEX_ABI)
        function = contract.functions.userCmd(callpath, payload)
        return await self._send(signer, function, gas, value=value)

    async def wait_for_receipt(self, tx_hash: str) -> Receipt:
        receipt = await self.web3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.receipt_timeout
        )
        return Receipt(
            tx_hash=tx_hash,
            status=receipt['status'],
            block_number=receipt.get('blockNumber'),
            gas_used=receipt.get('gasUsed'),
        )


async def ping(gateway: ChainGateway) -> NetworkInfo:
    """Fetch network identity; any failure means the endpoint is unusable."""
    return await gateway.network()


async def connect_gateway(
    primary_url: str,
    backup_url: Optional[str] = None,
    timeout: int = 30,
    receipt_timeout: int = 120,
    gas_estimate_buffer: float = 1.2,
    factory=Web3Gateway,
):
    """
    Connect to the primary RPC, falling back once to the backup RPC.

    Returns:
        (gateway, NetworkInfo)

    Raises:
        GatewayConnectionError: if no endpoint answers
    """
    candidates = [("primary", primary_url)]
    if backup_url:
        candidates.append(("backup", backup_url))

    failures = []
    for label, url in candidates:
        logger.info(f"Connecting to {label} RPC: {url}")
        try:
            gateway = factory(url, timeout=timeout, receipt_timeout=receipt_timeout,
                              gas_estimate_buffer=gas_estimate_buffer)
            info = await ping(gateway)
        except Exception as e:
            logger.error(f"{label.capitalize()} RPC connection failed: {e}")
            failures.append(f"{label}: {e}")
            continue

        logger.info(
            f"Connected to {label} RPC: network {info.name} "
            f"(chain id {info.chain_id}), block {info.block_number}"
        )
        return gateway, info

    if not backup_url:
        logger.error("No BACKUP_RPC_URL configured")
    raise GatewayConnectionError("; ".join(failures) or "no RPC endpoint configured")


__all__ = [
    "ChainGateway",
    "Web3Gateway",
    "GasParams",
    "NetworkInfo",
    "Receipt",
    "TokenInfo",
    "ERC20_ABI",
    "DEX_ABI",
    "MAX_UINT256",
    "connect_gateway",
]
