"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
import re


def parse_amount(amount_str: str) -> Decimal:
    """Parse an amount string into a Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45"
    - "1,234.56"
    - "0.5 ETH" (trailing currency code)
    - "(123.45)" (negative in parentheses)

    Args:
        amount_str: Amount string

    Returns:
        Decimal amount

    Raises:
        ValueError: If amount string cannot be parsed
    """
    if not amount_str or not amount_str.strip():
        raise ValueError("Empty amount string")

    amount_str = amount_str.strip()

    # Handle parentheses notation (negative)
    is_negative = False
    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    # Remove currency symbols and trailing currency codes
    amount_str = re.sub(r"[$€£¥]", "", amount_str)
    amount_str = re.sub(r"\s*[A-Za-z]{3,5}$", "", amount_str)

    amount_str = amount_str.replace(",", "").strip()

    try:
        amount = Decimal(amount_str)
    except InvalidOperation as e:
        raise ValueError(f"Could not parse amount '{amount_str}': {e}")
    if not amount.is_finite():
        raise ValueError(f"Could not parse amount '{amount_str}': not a finite number")
    return -amount if is_negative else amount


def parse_rate(rate_str: str) -> Decimal:
    """Parse an exchange rate, which must be a plain positive decimal."""
    try:
        rate = Decimal(rate_str.strip())
    except (InvalidOperation, AttributeError) as e:
        raise ValueError(f"Could not parse exchange rate '{rate_str}': {e}")
    if not rate.is_finite() or rate <= 0:
        raise ValueError(f"Exchange rate must be greater than 0, got '{rate_str}'")
    return rate


def format_amount(amount: Decimal) -> str:
    """Format an amount for display: thousands separators, no trailing zeros past cents."""
    normalized = amount.normalize()
    if normalized.as_tuple().exponent > -2:
        normalized = amount.quantize(Decimal("0.01"))
    return f"{normalized:,f}"
