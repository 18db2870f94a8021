"""On-chain amount value objects.

All amounts are held as integers in the smallest on-chain unit; decimal
views are derived on demand.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol

GWEI_DECIMALS = 9
UNIT_DECIMALS = 18


def to_decimal(value: int | float | str | Decimal) -> Decimal:
    """Convert a number to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def scale_to_integer(value: int | float | str | Decimal, decimals: int) -> int:
    """Exact `value * 10**decimals`, truncated toward zero. Ignores the Decimal context."""
    sign, digits, exponent = to_decimal(value).as_tuple()
    if not isinstance(exponent, int):
        raise ValueError(f"Amount is not a finite number: {value!r}")

    coefficient = int("".join(map(str, digits)))
    shift = exponent + decimals
    if shift >= 0:
        scaled = coefficient * 10**shift
    else:
        scaled = coefficient // 10**-shift
    return -scaled if sign else scaled


def from_integer(value: int, decimals: int) -> Decimal:
    """Exact `value / 10**decimals` without trailing zeros."""
    while decimals > 0 and value and value % 10 == 0:
        value //= 10
        decimals -= 1
    if value == 0:
        return Decimal(0)
    digits = tuple(int(d) for d in str(abs(value)))
    return Decimal((1 if value < 0 else 0, digits, -decimals))


class OnChainCountable(Protocol):
    """Anything that can be expressed as an on-chain integer quantity."""

    def get_on_chain_countable(self) -> int:
        ...


class TxSpeed(str, Enum):
    """Gas price tier."""

    NORMAL = "normal"
    FAST = "fast"
    URGENT = "urgent"


@dataclass(frozen=True)
class EVMTokenAmount:
    """
    Native coin amount.

    Construct from exactly one of units, gwei or wei; read back any of them.

    Example:
        >>> EVMTokenAmount(units=1.5).wei == EVMTokenAmount(gwei=1_500_000_000).wei
        True
    """

    _wei: int

    def __init__(
        self,
        units: int | float | str | Decimal | None = None,
        gwei: int | float | str | Decimal | None = None,
        wei: int | None = None,
    ) -> None:
        given = [v for v in (units, gwei, wei) if v is not None]
        if len(given) != 1:
            raise ValueError("Specify exactly one of units, gwei or wei")

        if units is not None:
            value, total = to_decimal(units), scale_to_integer(units, UNIT_DECIMALS)
        elif gwei is not None:
            value, total = to_decimal(gwei), scale_to_integer(gwei, GWEI_DECIMALS)
        else:
            value = total = int(wei)

        if value < 0:
            raise ValueError("Amount cannot be negative")
        object.__setattr__(self, "_wei", total)

    @property
    def wei(self) -> int:
        """Amount in wei."""
        return self._wei

    @property
    def gwei(self) -> Decimal:
        """Amount in gwei."""
        return from_integer(self._wei, GWEI_DECIMALS)

    @property
    def units(self) -> Decimal:
        """Amount in whole coins."""
        return from_integer(self._wei, UNIT_DECIMALS)

    def get_on_chain_countable(self) -> int:
        return self._wei

    def __repr__(self) -> str:
        return f"EVMTokenAmount(wei={self._wei})"


@dataclass(frozen=True)
class ERC20TokenAmount:
    """Token amount in elementary units with the token's decimals."""

    elementary_units: int
    decimals: int

    @classmethod
    def from_units(cls, units: int | float | str | Decimal, decimals: int) -> "ERC20TokenAmount":
        """Create from a human-readable amount."""
        return cls(scale_to_integer(units, decimals), decimals)

    @property
    def units(self) -> Decimal:
        """Amount in whole tokens."""
        return from_integer(self.elementary_units, self.decimals)

    def get_on_chain_countable(self) -> int:
        return self.elementary_units


@dataclass(frozen=True)
class EstimatedGasPrices:
    """Gas prices for each speed tier."""

    normal: EVMTokenAmount
    fast: EVMTokenAmount
    urgent: EVMTokenAmount

    def get_price_for_speed(self, speed: TxSpeed) -> EVMTokenAmount:
        """Pick the price for a tier."""
        if speed == TxSpeed.FAST:
            return self.fast
        if speed == TxSpeed.URGENT:
            return self.urgent
        return self.normal


def trim_decimal(value: int | float | str | Decimal, max_decimals: int) -> str:
    """Format an amount keeping at most `max_decimals` digits, rounding down."""
    return format(from_integer(scale_to_integer(value, max_decimals), max_decimals), "f")
