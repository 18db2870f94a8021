"""
Amount Value Object Tests

Unit conversions for native coin and ERC-20 amounts.
"""

from decimal import Decimal

import pytest

from ud_mpc_wallet.amounts import (
    ERC20TokenAmount,
    EVMTokenAmount,
    EstimatedGasPrices,
    TxSpeed,
    trim_decimal,
)


# ==================== EVM AMOUNT TESTS ====================

def test_units_and_gwei_agree():
    """1.5 coins and 1.5 billion gwei are the same wei amount"""
    assert EVMTokenAmount(units=1.5).wei == EVMTokenAmount(gwei=1_500_000_000).wei


def test_wei_views():
    """Test reading an amount back in every unit"""
    amount = EVMTokenAmount(wei=2_500_000_000_000_000_000)

    assert amount.units == Decimal("2.5")
    assert amount.gwei == Decimal("2500000000")
    assert amount.get_on_chain_countable() == 2_500_000_000_000_000_000


def test_float_units_have_no_binary_artifacts():
    """Test 0.1 coin is exactly 10^17 wei"""
    assert EVMTokenAmount(units=0.1).wei == 10**17


def test_fractional_wei_rounds_down():
    """Test sub-wei precision is truncated"""
    assert EVMTokenAmount(gwei="0.0000000015").wei == 1


def test_negative_amount_rejected():
    """Test negative amounts raise"""
    with pytest.raises(ValueError):
        EVMTokenAmount(units=-1)


@pytest.mark.parametrize("kwargs", [{}, {"units": 1, "wei": 10}])
def test_exactly_one_unit_required(kwargs):
    """Test constructor requires exactly one unit"""
    with pytest.raises(ValueError):
        EVMTokenAmount(**kwargs)


# ==================== ERC20 AMOUNT TESTS ====================

def test_erc20_from_units():
    """Test token amount scaling by decimals"""
    amount = ERC20TokenAmount.from_units("12.345678", decimals=6)

    assert amount.elementary_units == 12_345_678
    assert amount.units == Decimal("12.345678")
    assert amount.get_on_chain_countable() == 12_345_678


def test_erc20_extra_precision_truncated():
    """Test digits beyond token decimals are dropped"""
    assert ERC20TokenAmount.from_units("1.0000009", decimals=6).elementary_units == 1_000_000


def test_erc20_wide_amount_is_exact():
    """Test amounts wider than the default decimal precision never round up"""
    amount = ERC20TokenAmount.from_units("99999999999.999999999999999999", decimals=18)

    assert amount.elementary_units == 99_999_999_999_999_999_999_999_999_999
    assert amount.units == Decimal("99999999999.999999999999999999")


def test_large_wei_views_are_exact():
    """Test reading back a 30-digit wei amount loses nothing"""
    amount = EVMTokenAmount(units="123456789012.345678901234567891")

    assert amount.wei == 123_456_789_012_345_678_901_234_567_891
    assert amount.units == Decimal("123456789012.345678901234567891")


@pytest.mark.parametrize("units", ["NaN", "Infinity"])
def test_non_finite_amount_rejected(units):
    """Test NaN and infinite amounts raise"""
    with pytest.raises(ValueError):
        ERC20TokenAmount.from_units(units, decimals=6)


# ==================== GAS PRICES TESTS ====================

def test_price_for_speed():
    """Test each tier picks its own price"""
    prices = EstimatedGasPrices(
        normal=EVMTokenAmount(gwei=10),
        fast=EVMTokenAmount(gwei=20),
        urgent=EVMTokenAmount(gwei=30),
    )

    assert prices.get_price_for_speed(TxSpeed.NORMAL).gwei == 10
    assert prices.get_price_for_speed(TxSpeed.FAST).gwei == 20
    assert prices.get_price_for_speed(TxSpeed.URGENT).gwei == 30


# ==================== TRIM TESTS ====================

@pytest.mark.parametrize(
    "value,max_decimals,expected",
    [
        ("1.123456789", 4, "1.1234"),
        ("1.9999", 2, "1.99"),
        ("2.500", 9, "2.5"),
        ("3", 9, "3"),
        (0.000000001, 9, "0.000000001"),
        ("0.00000000099", 9, "0"),
        ("20000000000", 18, "20000000000"),
        (Decimal("20000000000.1234567890123456789"), 18, "20000000000.123456789012345678"),
    ],
)
def test_trim_decimal(value, max_decimals, expected):
    """Test trimming rounds down and strips trailing zeros"""
    assert trim_decimal(value, max_decimals) == expected
