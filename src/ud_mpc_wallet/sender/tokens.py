"""Supported tokens, their contracts and the sending spec."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ..amounts import ERC20TokenAmount, EVMTokenAmount, OnChainCountable, TxSpeed
from ..chains.evm import BlockchainEnvironment, BlockchainType, ChainSpec
from ..types import CryptoSenderError, ErrorCode


class SupportedToken(str, Enum):
    """Tokens the crypto sender can transfer."""

    ETH = "ETH"
    MATIC = "MATIC"
    USDT = "USDT"
    USDC = "USDC"
    BNB = "BNB"
    WETH = "WETH"

    @property
    def is_native(self) -> bool:
        """Check if this is a chain's native coin."""
        return self in (SupportedToken.ETH, SupportedToken.MATIC)

    def get_contract_address(self, chain: ChainSpec) -> str:
        """Get the token contract on a chain."""
        contract = TOKEN_CONTRACTS.get(self, {}).get(chain.blockchain_type)
        if contract is None:
            raise CryptoSenderError(
                ErrorCode.TOKEN_NOT_SUPPORTED_ON_CHAIN,
                f"{self.value} is not supported on {chain.blockchain_type.value}",
            )
        address = contract.mainnet if chain.env == BlockchainEnvironment.MAINNET else contract.testnet
        if address is None:
            raise CryptoSenderError(
                ErrorCode.TOKEN_NOT_SUPPORTED_ON_CHAIN,
                f"{self.value} has no {chain.env.value} contract on {chain.blockchain_type.value}",
            )
        return address

    def get_contract_decimals(self, chain_type: BlockchainType) -> int:
        """Get the token decimals on a chain."""
        contract = TOKEN_CONTRACTS.get(self, {}).get(chain_type)
        if contract is None:
            raise CryptoSenderError(
                ErrorCode.DECIMALS_NOT_IDENTIFIED,
                f"Unknown decimals for {self.value} on {chain_type.value}",
            )
        return contract.decimals


@dataclass(frozen=True)
class TokenContract:
    """Token contract addresses per environment."""

    mainnet: str
    testnet: str | None
    decimals: int


TOKEN_CONTRACTS: dict[SupportedToken, dict[BlockchainType, TokenContract]] = {
    SupportedToken.USDT: {
        BlockchainType.ETHEREUM: TokenContract(
            mainnet="0xdAC17F958D2ee523a2206206994597C13D831ec7",
            testnet="0xaA8E23Fb1079EA71e0a56F48a2aA51851D8433D0",  # sepolia
            decimals=6,
        ),
        BlockchainType.MATIC: TokenContract(
            mainnet="0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
            testnet=None,
            decimals=6,
        ),
    },
    SupportedToken.BNB: {
        BlockchainType.ETHEREUM: TokenContract(
            mainnet="0xB8c77482e45F1F44dE1745F52C74426C631bDD52",
            testnet=None,
            decimals=18,
        ),
        BlockchainType.MATIC: TokenContract(
            mainnet="0x3BA4c387f786bFEE076A58914F5Bd38d668B42c3",
            testnet=None,
            decimals=18,
        ),
    },
    SupportedToken.USDC: {
        BlockchainType.ETHEREUM: TokenContract(
            mainnet="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
            testnet="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",  # sepolia
            decimals=6,
        ),
        BlockchainType.MATIC: TokenContract(
            mainnet="0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
            testnet=None,
            decimals=6,
        ),
    },
    SupportedToken.WETH: {
        BlockchainType.ETHEREUM: TokenContract(
            mainnet="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            testnet="0x7b79995e5f793A07Bc00c21412e50Ecae098E7f9",  # sepolia
            decimals=18,
        ),
        BlockchainType.MATIC: TokenContract(
            mainnet="0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
            testnet=None,
            decimals=18,
        ),
    },
}


@dataclass(frozen=True)
class CryptoSendingSpec:
    """What to send: token, on-chain amount and speed tier."""

    token: SupportedToken
    amount: OnChainCountable
    speed: TxSpeed = TxSpeed.NORMAL

    @classmethod
    def from_units(
        cls,
        token: SupportedToken,
        units: float | str | Decimal,
        speed: TxSpeed = TxSpeed.NORMAL,
        chain_type: BlockchainType = BlockchainType.ETHEREUM,
    ) -> "CryptoSendingSpec":
        """Create a spec from a human-readable amount."""
        if token.is_native:
            amount: OnChainCountable = EVMTokenAmount(units=units)
        else:
            amount = ERC20TokenAmount.from_units(units, token.get_contract_decimals(chain_type))
        return cls(token=token, amount=amount, speed=speed)
