from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
import re
from typing import Any, Optional


# ============================================================================
# PRECISION CONSTANTS (Solana base units)
# ============================================================================

# 1 SOL = 1_000_000_000 lamports
LAMPORTS_PER_SOL = Decimal('1000000000')

# Longest fractional part written to an output amount
MAX_FRACTION_DIGITS = 18

# Longest currency code accepted by the import format
MAX_CURRENCY_CODE_LENGTH = 16

UNKNOWN_CURRENCY = 'UNKNOWN'

_CURRENCY_STRIP = re.compile(r'[^A-Z0-9-]')


# ============================================================================
# ROUNDING CONTEXT
# ============================================================================

def set_transaction_rounding_context() -> None:
    """
    Set global Decimal context for amount calculations.
    Uses ROUND_HALF_UP and enough precision for 18 fractional digits on
    amounts with up to 20 integer digits.
    Call this once at application startup.
    """
    ctx = getcontext()
    ctx.rounding = ROUND_HALF_UP
    ctx.prec = 40


# Initialize rounding on module load
set_transaction_rounding_context()


# ============================================================================
# DECIMAL COERCION HELPER
# ============================================================================

def to_decimal(value: Any, default: Decimal = Decimal(0)) -> Decimal:
    """
    Safely coerce any value to a Decimal, preserving precision for token amounts.

    Args:
        value: Any value to convert. Supports int, float, str, Decimal, bool, None.
        default: Decimal fallback if conversion fails. Defaults to Decimal(0).

    Returns:
        Decimal: Precise numeric value, or default if conversion fails.

    Examples:
        >>> to_decimal('45000.123')
        Decimal('45000.123')
        >>> to_decimal(1.5) == Decimal('1.5')
        True
        >>> to_decimal('invalid') == Decimal(0)
        True
        >>> to_decimal(None, Decimal('-1')) == Decimal('-1')
        True

    Note:
        - Floats are coerced via str() to preserve precision
        - Existing Decimals are passed through unchanged
        - None, NaN, infinities and invalid strings return default
    """
    try:
        if isinstance(value, Decimal):
            return value if value.is_finite() else default
        if value is None:
            return default
        result = Decimal(str(value))
        return result if result.is_finite() else default
    except (InvalidOperation, ValueError, TypeError):
        return default


# ============================================================================
# BASE-UNIT SCALING
# ============================================================================

def scale_integer_string(raw: Any, decimals: int) -> str:
    """
    Place a decimal point ``decimals`` digits from the right of an integer
    string, using string arithmetic only.

    Leading zeros are stripped from the integer part, trailing zeros from the
    fraction, and the point is dropped when nothing remains after it.

    Examples:
        >>> scale_integer_string('1500000', 6)
        '1.5'
        >>> scale_integer_string('5', 9)
        '0.000000005'
        >>> scale_integer_string('-2500', 3)
        '-2.5'
    """
    text = str(raw if raw is not None else '').strip()
    negative = text.startswith('-')
    digits = text.lstrip('+-')
    if not digits.isdigit():
        return '0'
    if decimals <= 0:
        whole, frac = digits + '0' * (-decimals), ''
    elif len(digits) > decimals:
        whole, frac = digits[:-decimals], digits[-decimals:]
    else:
        whole, frac = '', digits.rjust(decimals, '0')

    whole = whole.lstrip('0') or '0'
    frac = frac.rstrip('0')
    result = f"{whole}.{frac}" if frac else whole
    if result == '0':
        return '0'
    return f"-{result}" if negative else result


def lamports_to_sol(lamports: Any) -> Decimal:
    """Convert an integer lamport amount to SOL."""
    return Decimal(scale_integer_string(str(int(to_decimal(lamports))), 9))


# ============================================================================
# OUTPUT FORMATTING
# ============================================================================

def format_decimal(value: Any) -> str:
    """
    Render a number as a plain decimal string.

    No exponent, trailing zeros removed, at most 18 fractional digits
    (truncated, never rounded up). Zero and negative zero render as ``'0'``.
    """
    d = to_decimal(value)
    if d == 0:
        return '0'
    text = format(d, 'f')
    if '.' in text:
        whole, frac = text.split('.', 1)
        frac = frac[:MAX_FRACTION_DIGITS].rstrip('0')
        text = f"{whole}.{frac}" if frac else whole
    if text in ('-0', '0', ''):
        return '0'
    return text


def amount_string(value: Any) -> str:
    """Format a non-negative amount for a row field; empty sides become '0'."""
    if value is None or value == '':
        return '0'
    return format_decimal(abs(to_decimal(value)))


def normalize_currency_code(raw: Optional[str]) -> str:
    """
    Canonicalize a currency code: upper-case, keep only A-Z, 0-9 and '-',
    truncate to 16 characters, ``UNKNOWN`` when nothing survives.

    Idempotent: ``normalize_currency_code(normalize_currency_code(s))``
    equals ``normalize_currency_code(s)``.
    """
    cleaned = _CURRENCY_STRIP.sub('', str(raw or '').upper())[:MAX_CURRENCY_CODE_LENGTH]
    return cleaned or UNKNOWN_CURRENCY
