"""
Line-item and party extraction from OCR text (pt-AO documents)

Strategy:
- A line ending in an amount (optionally with Kz/AOA) is a line item
- Totals, taxes and change lines are skipped
- No priced line at all → every meaningful line becomes an unpriced item,
  so a readable document always yields something to classify
- Supplier/beneficiary comes from labelled header lines, else the first
  all-caps line

Amounts follow pt-AO formatting (1.234.567,89) but 1,234.56 is accepted too.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import structlog

from packages.common.config import settings
from packages.common.schemas.document import Party
from packages.domain.classification.normalizer import normalize
from packages.domain.classification.schemas import LineItemInput

logger = structlog.get_logger()

CURRENCY = r"(?:kzs?|akz|aoa|usd|eur|\$|€)"
AMOUNT = r"(?P<amount>\d{1,3}(?:[., ]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?)"
PRICED_LINE = re.compile(
    rf"^(?P<description>.*?[^\W\d_].*?)\s+(?:{CURRENCY}\s*)?{AMOUNT}(?:\s*{CURRENCY})?\s*$",
    re.IGNORECASE,
)

SKIP_TOKENS = frozenset({
    "total", "subtotal", "iva", "imposto", "impostos", "troco", "saldo",
    "retencao", "desconto", "pagar", "pago", "multicaixa", "nif",
})

PARTY_PATTERNS = (
    re.compile(r"(benefici[áa]rio)\s*[:|-]\s*(.+)", re.IGNORECASE),
    re.compile(r"(fornecedor|emitente)\s*[:|-]\s*(.+)", re.IGNORECASE),
    re.compile(r"(cliente)\s*[:|-]\s*(.+)", re.IGNORECASE),
    re.compile(r"(empresa)\s*[:|-]\s*(.+)", re.IGNORECASE),
)
PARTY_HEADER_LINES = 50
PARTY_MAX_LENGTH = 120


def parse_amount(raw: str) -> Optional[Decimal]:
    """
    Parse a pt-AO or en-US formatted amount.

    "5.000,00" → 5000.00, "1,234.56" → 1234.56, "5.000" → 5000.00, "12,5" → 12.50
    """
    if not raw:
        return None
    value = raw.replace(" ", "").replace(" ", "")

    if "," in value and "." in value:
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif "," in value:
        head, _, tail = value.rpartition(",")
        if len(tail) in (1, 2):
            value = head.replace(",", "") + "." + tail
        else:
            value = value.replace(",", "")
    elif "." in value:
        parts = value.split(".")
        if len(parts) > 2 or len(parts[-1]) == 3:
            value = value.replace(".", "")

    try:
        return Decimal(value).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def format_kwanza(value: Optional[Decimal]) -> Optional[str]:
    """Display an amount the pt-AO way: Kz 1.234,56"""
    if value is None:
        return None
    try:
        amount = Decimal(value).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    sign = "-" if amount < 0 else ""
    integer, _, cents = f"{abs(amount):.2f}".partition(".")
    grouped = f"{int(integer):,}".replace(",", ".")
    return f"Kz {sign}{grouped},{cents}"


def extract_party(text: str) -> Optional[Party]:
    """Supplier or beneficiary named in the first lines of the document"""
    header = "\n".join((text or "").splitlines()[:PARTY_HEADER_LINES])

    for pattern in PARTY_PATTERNS:
        match = pattern.search(header)
        if not match or not match.group(2):
            continue
        value = re.split(r"\s{2,}|\t|\r|\n", match.group(2))[0].strip()
        if not value:
            continue
        label = match.group(1).lower()
        if label.startswith(("fornecedor", "emitente")):
            return Party(fornecedor=value[:PARTY_MAX_LENGTH])
        return Party(beneficiario=value[:PARTY_MAX_LENGTH])

    for line in header.splitlines():
        line = line.strip()
        if len(line) > 3 and line == line.upper() and any(ch.isalpha() for ch in line):
            return Party(fornecedor=line[:PARTY_MAX_LENGTH])
    return None


class LineItemExtractor:
    """Splits extracted text into candidate line items"""

    def __init__(self, max_items: Optional[int] = None):
        self.max_items = max_items or settings.max_items_per_document

    def _is_skipped(self, tokens: List[str]) -> bool:
        return not tokens or bool(SKIP_TOKENS.intersection(tokens))

    def extract(self, text: str) -> List[LineItemInput]:
        """
        Extract line items from OCR text.

        Args:
            text: Extracted document text

        Returns:
            Line items in document order (numbered from 1), at most max_items
        """
        lines = [line.strip() for line in (text or "").splitlines()]
        lines = [line for line in lines if line]

        priced = []
        for line in lines:
            match = PRICED_LINE.match(line)
            if not match:
                continue
            description = match.group("description").strip(" .:-\t")
            if self._is_skipped(normalize(description)):
                continue
            priced.append((description, parse_amount(match.group("amount"))))

        if priced:
            candidates = priced
        else:
            candidates = [(line, None) for line in lines if not self._is_skipped(normalize(line))]

        items = [
            LineItemInput(line_number=index, description=description, amount=amount)
            for index, (description, amount) in enumerate(candidates[: self.max_items], start=1)
        ]

        logger.info("line_items_extracted",
                    count=len(items),
                    priced=bool(priced),
                    truncated=len(candidates) > self.max_items)
        return items


line_item_extractor = LineItemExtractor()
