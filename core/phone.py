from .catalog import get_countries

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15


def digits_only(value):
    return "".join(ch for ch in str(value or "") if ch.isdigit())


def format_phone(value):
    """Canonical storage form: ``+`` followed by digits."""
    digits = digits_only(value)
    if not digits:
        return ""
    return f"+{digits}"


def phone_variants(value):
    digits = digits_only(value)
    if not digits:
        return []
    return [f"+{digits}", digits]


def is_valid_length(value):
    return MIN_PHONE_DIGITS <= len(digits_only(value)) <= MAX_PHONE_DIGITS


def parse_full_phone(value):
    """Split a full number into ``(country, local_number)`` by its dial code."""
    digits = digits_only(value)
    by_dial_length = sorted(get_countries(), key=lambda item: len(item["dial_code"]), reverse=True)
    for country in by_dial_length:
        if digits.startswith(country["dial_code"]):
            return country, digits[len(country["dial_code"]):]
    return None, digits


def format_local_display(local_number, country):
    numbers = digits_only(local_number)
    if country["code"] == "MX":
        if len(numbers) <= 2:
            return numbers
        if len(numbers) <= 6:
            return f"{numbers[:2]} {numbers[2:]}"
        return f"{numbers[:2]} {numbers[2:6]} {numbers[6:10]}"
    if country["code"] == "BZ":
        if len(numbers) <= 3:
            return numbers
        return f"{numbers[:3]} {numbers[3:7]}"
    if len(numbers) <= 4:
        return numbers
    return f"{numbers[:4]} {numbers[4:8]}"


def format_phone_display(value):
    country, local_number = parse_full_phone(value)
    if country is None:
        return str(value or "")
    return f"+{country['dial_code']} {format_local_display(local_number, country)}"
