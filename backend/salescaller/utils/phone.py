"""
Phone Number Utilities
"""

DEFAULT_COUNTRY_CODE = "60"  # Malaysia


def normalize_number(number: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Normalize phone number to E.164 format.

    Args:
        number: Phone number in various formats ("012-345 6789", "60123456789", "+60123456789")
        country_code: Country code applied to national numbers with a leading 0

    Returns:
        Normalized number
    """
    # Remove common formatting characters
    number = number.strip().replace(" ", "").replace("-", "").replace("(", "").replace(")", "")

    if number.startswith("+"):
        return number
    if number.startswith("00"):
        return "+" + number[2:]
    if number.startswith("0"):
        return f"+{country_code}{number[1:]}"
    return "+" + number


def digits_only(number: str) -> str:
    """Number without '+' or formatting, as WhatsApp gateways expect."""
    return "".join(ch for ch in number if ch.isdigit())
