"""
Text normalization for fuzzy matching of names and descriptions (English/Arabic)
"""
from typing import Any, List
import re
import unicodedata

TATWEEL = "ـ"

ARABIC_LETTER_MAP = str.maketrans({
    "أ": "ا",
    "إ": "ا",
    "آ": "ا",
    "ٱ": "ا",
    "ى": "ي",
    "ئ": "ي",
    "ؤ": "و",
    "ة": "ه",
    # Persian / Urdu letters typed on Arabic keyboards
    "گ": "ك",
    "ک": "ك",
    "ی": "ي",
    "پ": "ب",
    "چ": "ج",
    "ڤ": "ف",
    "ژ": "ز",
})

DIGIT_MAP = str.maketrans(
    "٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹",
    "01234567890123456789"
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]|_")
_WHITESPACE_RE = re.compile(r"\s+")

# Folding can expose new foldable sequences; a few passes always reach a fixpoint
_MAX_PASSES = 4


def _normalize_once(text: str) -> str:
    text = text.casefold()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.category(ch).startswith("M"))
    text = text.replace(TATWEEL, "")
    text = text.translate(ARABIC_LETTER_MAP)
    text = text.translate(DIGIT_MAP)
    text = _PUNCTUATION_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_text(value: Any) -> str:
    """
    Canonical form used for every comparison.

    Lower-cases, strips diacritics and tatweel, folds Arabic letter variants,
    maps Eastern digits to ASCII and turns punctuation into single spaces.
    Returns "" for None and non-string input. normalize_text(normalize_text(s))
    always equals normalize_text(s).
    """
    if not isinstance(value, str) or not value:
        return ""

    current = value
    for _ in range(_MAX_PASSES):
        normalized = _normalize_once(current)
        if normalized == current:
            break
        current = normalized
    return current


def tokenize(value: Any) -> List[str]:
    """Split normalized text into tokens"""
    normalized = normalize_text(value)
    return normalized.split(" ") if normalized else []


def strip_article(token: str) -> str:
    """Drop the Arabic definite article from a normalized token"""
    if token.startswith("ال") and len(token) > 2:
        return token[2:]
    return token
