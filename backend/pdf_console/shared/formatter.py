import textwrap
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%Y.%m.%d", "%Y%m%d")


def parse_decimal(x) -> Decimal:
    """Safely parse numbers like '$1,000' or '(123)' into Decimal."""
    if x is None:
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    if isinstance(x, (int, float)):
        return Decimal(str(x))
    s = str(x).replace("$", "").replace(",", "").strip()
    if s.startswith("(") and s.endswith(")"):
        s = "-" + s[1:-1]
    try:
        return Decimal(s)
    except InvalidOperation:
        return Decimal("0")


def parse_date(x):
    """Parse dates, datetimes and common date strings into ``date``; None if impossible."""
    if x is None or x == "":
        return None
    if isinstance(x, datetime):
        return x.date()
    if isinstance(x, date):
        return x
    s = str(x).strip()
    try:
        # ISO timestamps as stored by the sync tables ("2023-01-01T00:00:00+00:00")
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def quantize_money(value) -> Decimal:
    return parse_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount) -> str:
    """Format an amount as US dollars with grouping and two decimals ('$1,234.56')."""
    value = quantize_money(amount)
    if value < 0:
        return f"-${-value:,.2f}"
    return f"${value:,.2f}"


def format_quantity(qty) -> str:
    value = parse_decimal(qty)
    if value == value.to_integral_value():
        return f"{int(value):,}"
    return f"{value.normalize():f}"


def format_long_date(value) -> str:
    """Body dates: 'January 1, 2023'. 'N/A' when missing."""
    if value is None or value == "":
        return "N/A"
    d = parse_date(value)
    if d is None:
        return "Invalid Date"
    return f"{d:%B} {d.day}, {d.year}"


def format_short_date(value) -> str:
    """Space-constrained dates: '01/01/2023'. 'N/A' when missing."""
    if value is None or value == "":
        return "N/A"
    d = parse_date(value)
    if d is None:
        return "Invalid Date"
    return d.strftime("%m/%d/%Y")


def display_text(value, placeholder="N/A") -> str:
    if value is None:
        return placeholder
    s = str(value).strip()
    return s if s else placeholder


def wrap_text(text, max_width_chars=50):
    """Wrap text preserving existing newlines."""
    if not text:
        return []
    lines = []
    for line in str(text).split("\n"):
        if len(line) <= max_width_chars:
            lines.append(line)
        else:
            lines.extend(textwrap.wrap(line, width=max_width_chars, break_long_words=True))
    return lines
