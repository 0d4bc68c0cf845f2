from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "ISK", "UGX", "XAF", "XOF"})
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "KWD", "OMR", "JOD", "TND"})


def minor_unit_exponent(currency: str) -> int:
    code = currency.upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def to_minor_units(amount: str | Decimal, currency: str) -> int:
    """Converts a decimal provider amount such as ``"500.00"`` to integer minor units."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc
    scaled = value.scaleb(minor_unit_exponent(currency))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    return Decimal(amount).scaleb(-minor_unit_exponent(currency))


def format_amount(amount: int, currency: str) -> str:
    exponent = minor_unit_exponent(currency)
    return f"{from_minor_units(amount, currency):.{exponent}f} {currency.upper()}"
