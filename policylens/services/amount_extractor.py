"""
Currency amount recognition in shekels and dollars
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class Currency(str, Enum):
    ILS = "ILS"
    USD = "USD"


@dataclass
class Amount:
    """A currency figure found in text"""
    value: float
    currency: Currency
    text: str
    start: int


NUMBER = r'\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?'

SHEKEL_PATTERNS = [
    re.compile(rf'({NUMBER})\s*(?:₪|ש"ח|ש״ח|שקלים|שקל)'),
    re.compile(rf'₪\s*({NUMBER})'),
]

DOLLAR_PATTERNS = [
    re.compile(rf'\$\s*({NUMBER})'),
    re.compile(rf'({NUMBER})\s*(?:\$|דולר|USD)'),
]

# A number followed by the shekel sign, as written in model-produced differences
FINANCIAL_IMPACT_PATTERN = re.compile(r'(\d[\d,]*(\.\d+)?)\s*₪')


def _to_float(number: str) -> Optional[float]:
    try:
        return float(number.replace(",", ""))
    except ValueError:
        return None


def extract_amounts(text: str) -> List[Amount]:
    """Find every shekel and dollar amount, ordered by position"""
    amounts: List[Amount] = []
    seen = set()
    for currency, patterns in ((Currency.ILS, SHEKEL_PATTERNS), (Currency.USD, DOLLAR_PATTERNS)):
        for pattern in patterns:
            for match in pattern.finditer(text):
                value = _to_float(match.group(1))
                if value is None or match.start(1) in seen:
                    continue
                seen.add(match.start(1))
                amounts.append(Amount(value=value, currency=currency, text=match.group(0), start=match.start()))
    return sorted(amounts, key=lambda a: a.start)


def find_highest_amount(text: str, currency: Optional[Currency] = None) -> Optional[Amount]:
    """Largest amount in the text, optionally restricted to one currency"""
    amounts = [a for a in extract_amounts(text) if currency is None or a.currency == currency]
    if not amounts:
        return None
    return max(amounts, key=lambda a: a.value)


def extract_financial_impact(text: str) -> Optional[float]:
    """First shekel figure in a comparison's difference text, None when absent"""
    if not text:
        return None
    match = FINANCIAL_IMPACT_PATTERN.search(text)
    if not match:
        return None
    return _to_float(match.group(1).rstrip(","))
