"""
Currency codes, symbols and the checks built on them.

Shared by the book forms (validation), the reports (formatting) and the
assistant (currency detection in chat messages).
"""
import logging
import re

logger = logging.getLogger(__name__)


VALID_CURRENCIES = [
    "USD", "EUR", "GBP", "JPY", "CAD", "AUD", "CHF", "CNY", "INR", "MXN",
    "BRL", "ZAR", "RUB", "KRW", "SGD", "HKD", "NZD", "SEK", "NOK", "DKK",
    "PLN", "CZK", "HUF", "TRY", "TWD", "THB", "IDR", "MYR", "PHP", "VND",
    "ILS", "AED", "SAR", "QAR", "KWD", "BHD", "OMR", "JOD", "LBP", "EGP",
    "NGN", "CLP", "COP", "PEN", "ARS", "UYU",
]

PAYMENT_METHODS = ["Cash", "Credit Card", "Wire Transfer", "PayPal", "Other"]

# code -> display symbol
CURRENCY_SYMBOLS = {
    "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "INR": "₹", "RUB": "₽",
    "KRW": "₩", "TRY": "₺", "VND": "₫", "ILS": "₪", "AED": "د.إ", "SAR": "﷼",
    "KWD": "KD", "BHD": "BD", "OMR": "OMR", "JOD": "JOD", "LBP": "LBP",
    "EGP": "EGP", "NGN": "₦", "PHP": "₱", "BRL": "R$", "CHF": "CHF",
    "CAD": "C$", "AUD": "A$", "NZD": "NZ$", "SEK": "kr", "NOK": "kr",
    "DKK": "kr", "PLN": "zł", "CZK": "Kč", "HUF": "Ft", "TWD": "NT$",
    "THB": "฿", "IDR": "Rp", "MYR": "RM", "SGD": "S$", "HKD": "HK$",
    "CNY": "CN¥", "MXN": "MXN", "ARS": "ARS$", "CLP": "CLP$", "COP": "COP$",
    "PEN": "S/", "UYU": "UYU$", "ZAR": "ZAR",
}

# symbol found in a chat message -> code
# order matters: first hit wins, so "$" shadows the prefixed dollar signs
MESSAGE_SYMBOLS = {
    "$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY", "₹": "INR", "₽": "RUB",
    "₩": "KRW", "₺": "TRY", "₫": "VND", "₪": "ILS", "د.إ": "AED", "﷼": "SAR",
    "KD": "KWD", "BD": "BHD", "OMR": "OMR", "JOD": "JOD", "LBP": "LBP",
    "EGP": "EGP", "₦": "NGN", "₱": "PHP", "R$": "BRL", "CHF": "CHF",
    "C$": "CAD", "A$": "AUD", "NZ$": "NZD", "kr": "SEK", "Nkr": "NOK",
    "Dkr": "DKK", "zł": "PLN", "Kč": "CZK", "Ft": "HUF", "NT$": "TWD",
    "฿": "THB", "Rp": "IDR", "RM": "MYR", "S$": "SGD", "HK$": "HKD",
    "CN¥": "CNY", "MX$": "MXN", "ARS$": "ARS", "CLP$": "CLP", "COP$": "COP",
    "S/": "PEN", "UYU$": "UYU", "ZAR": "ZAR",
}

_CODE_RE = re.compile(r"\b(" + "|".join(VALID_CURRENCIES) + r")\b", re.IGNORECASE)


def is_valid_currency(code: str | None) -> bool:
    return bool(code) and code.upper() in VALID_CURRENCIES


def format_currency(amount: float, currency: str = "USD") -> str:
    """"$1,234.50" for known codes, "1,234.50 XYZ" otherwise."""
    if not is_valid_currency(currency):
        logger.warning("Invalid currency code: %s. Using fallback format.", currency)
        return f"{amount:,.2f} {currency}"

    symbol = CURRENCY_SYMBOLS.get(currency.upper(), currency.upper())
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def detect_currency(message: str) -> str | None:
    for symbol, code in MESSAGE_SYMBOLS.items():
        if symbol in message:
            return code

    match = _CODE_RE.search(message)
    if match:
        return match.group(1).upper()

    return None


def check_currency_compatibility(message: str, books) -> dict:
    """
    Compare the currency mentioned in a chat message with the user's books.

    Returns a dict with ``compatible`` and a human readable ``message``; when a
    currency was detected it also carries ``detected_currency``,
    ``book_currency`` and ``book_name``.
    """
    detected = detect_currency(message)

    if not detected:
        return {
            "compatible": True,
            "message": "No specific currency detected, using book default",
        }

    matching = next((b for b in books if b.currency == detected), None)
    if matching:
        return {
            "compatible": True,
            "detected_currency": detected,
            "book_currency": matching.currency,
            "book_name": matching.name,
            "message": f'Currency {detected} matches book "{matching.name}" ({matching.currency})',
        }

    if not books:
        return {
            "compatible": True,
            "detected_currency": detected,
            "message": "No books to compare the currency against",
        }

    first = books[0]
    return {
        "compatible": False,
        "detected_currency": detected,
        "book_currency": first.currency,
        "book_name": first.name,
        "message": (
            f"⚠️ Currency mismatch! You mentioned {detected}, but the book "
            f'"{first.name}" uses {first.currency}. Please use {first.currency} '
            f"or specify a different book."
        ),
    }
