"""
Text normalization for line-item descriptions.

normalize() turns free text into the token sequence the classifier compares
against account lexicons. Output tokens are lowercase, accent-free, and carry
no currency markers, numbers or Portuguese function words, so re-joining and
re-normalizing them yields the same sequence.
"""
import re
import unicodedata
from typing import Iterable, List

STOP_WORDS = frozenset({
    "a", "ao", "aos", "as", "com", "como", "da", "das", "de", "do", "dos",
    "e", "em", "entre", "na", "nas", "no", "nos", "o", "os", "ou", "para",
    "pela", "pelas", "pelo", "pelos", "per", "por", "que", "se", "sem",
    "sob", "sobre", "um", "uma", "uns", "umas", "ref", "qtd", "un", "und",
})

CURRENCY_TOKENS = frozenset({
    "kz", "kzs", "akz", "aoa", "usd", "eur", "us", "brl", "zar",
})

CURRENCY_SYMBOLS = re.compile(r"[$€£¥₩₹¢]|R\$|US\$")

# 1.234.567,89 / 1,234,567.89 / 1 234 567 (no-break spaces only)
THOUSANDS_SEPARATOR = re.compile(r"(?<=\d)[.,\u00a0\u202f](?=\d{3}(?!\d))")

TOKEN_PATTERN = re.compile(r"[^\W_]+")


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    folded = stripped.casefold()
    # casefold can reintroduce decomposable characters
    decomposed = unicodedata.normalize("NFKD", folded)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _keep(token: str) -> bool:
    if len(token) < 2 or token.isdigit():
        return False
    return token not in STOP_WORDS and token not in CURRENCY_TOKENS


def normalize(text: str) -> List[str]:
    """
    Normalize a description into classifier tokens.

    Args:
        text: Raw description (OCR line, budget item label, account name)

    Returns:
        Token list in original order, duplicates preserved
    """
    if not text:
        return []

    text = CURRENCY_SYMBOLS.sub(" ", text)
    text = THOUSANDS_SEPARATOR.sub("", text)
    text = _fold(text)

    return [token for token in TOKEN_PATTERN.findall(text) if _keep(token)]


def token_set(texts: Iterable[str]) -> frozenset:
    """Union of normalized tokens over several texts"""
    tokens = set()
    for text in texts:
        tokens.update(normalize(text))
    return frozenset(tokens)
