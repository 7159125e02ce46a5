"""
Expense / Note Search Analyzer

Splits a free-text search into expense categories (matched against a small
English/Arabic vocabulary) and description tokens, with the spelling
variants each token should also match.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from sqlalchemy import and_, or_

from facility_ledger.models import ExpenseSourceType
from facility_ledger.services.text_normalizer import normalize_text, strip_article

MAX_TOKEN_VARIANTS = 32

SOURCE_TYPE_KEYWORDS = [
    (ExpenseSourceType.TECHNICIAN_WORK.value, [
        "technician", "tech", "صيانة", "صيانه", "فني", "الفني", "فنين",
    ]),
    (ExpenseSourceType.STAFF_WORK.value, [
        "staff", "عامل", "عمالة", "عماله", "موظف", "موظفين",
    ]),
    (ExpenseSourceType.ELECTRICITY.value, [
        "electricity", "electric", "كهرباء", "كهربا", "الكهرباء", "شحن", "شحنه", "شحنات",
    ]),
    (ExpenseSourceType.OTHER.value, [
        "other", "misc", "general", "زينة", "زينه", "الزينه", "ديكور", "ديكورات",
        "trash", "garbage", "waste", "bin", "bins", "صندوق", "صناديق", "زبالة",
        "زباله", "قمامة", "قمامه", "حاوية", "حاويات",
    ]),
]

SEARCH_KEYWORD_GROUPS = {
    "DECORATION": [
        "زينة", "زينه", "الزينه", "ديكور", "ديكورات", "decor", "decoration",
        "ornament", "ornaments",
    ],
    "WASTE_BINS": [
        "صندوق", "صناديق", "زبالة", "زباله", "قمامة", "قمامه", "حاوية", "حاويات",
        "سلة", "سلل", "trash", "trashcan", "garbage", "bin", "bins", "waste", "dumpster",
    ],
}

SEARCH_STOP_WORDS = {
    "ايه", "اي", "ايش", "هو", "هي", "هم", "هن", "احنا", "انا", "انت", "انتي",
    "انتو", "ال", "علي", "عن", "في", "من", "ما", "ايوه", "لا", "مش", "كام", "كم",
    "ليه", "اللي", "was", "were", "what", "did", "how", "much", "many", "the",
    "a", "an", "and", "or", "we", "us", "for", "on", "to", "of",
}

# Orthographic alternatives used to widen a LIKE search over stored text
ARABIC_VARIANTS = {
    "ا": "أإآ",
    "ه": "ة",
    "ي": "ىئ",
    "و": "ؤ",
}


def _build_keyword_lookup() -> Dict[str, Set[str]]:
    lookup: Dict[str, Set[str]] = {}
    for source_type, keywords in SOURCE_TYPE_KEYWORDS:
        for keyword in keywords:
            normalized = normalize_text(keyword)
            for form in {normalized, strip_article(normalized)}:
                lookup.setdefault(form, set()).add(source_type)
    return lookup


def _build_group_lookup() -> Dict[str, List[str]]:
    lookup: Dict[str, List[str]] = {}
    for terms in SEARCH_KEYWORD_GROUPS.values():
        normalized_terms = sorted({normalize_text(term) for term in terms})
        for term in normalized_terms:
            lookup.setdefault(term, normalized_terms)
    return lookup


KEYWORD_LOOKUP = _build_keyword_lookup()
GROUP_LOOKUP = _build_group_lookup()


def arabic_variants(token: str, limit: int = MAX_TOKEN_VARIANTS) -> Set[str]:
    """Every spelling reachable by swapping folded letters back to their variants"""
    variants = {token}
    frontier = [token]
    while frontier and len(variants) < limit:
        current = frontier.pop(0)
        for index, char in enumerate(current):
            for replacement in ARABIC_VARIANTS.get(char, ""):
                candidate = current[:index] + replacement + current[index + 1:]
                if candidate not in variants:
                    variants.add(candidate)
                    frontier.append(candidate)
                    if len(variants) >= limit:
                        break
    return variants


def expand_token(token: str) -> List[str]:
    """
    Spellings and synonyms treated as equal to a normalized token.

    The token, its form without the article and its synonyms come first;
    spelling variants fill the rest up to MAX_TOKEN_VARIANTS.
    """
    bases = [token]
    stripped = strip_article(token)
    if stripped != token:
        bases.append(stripped)
    for synonym in GROUP_LOOKUP.get(token, []) + GROUP_LOOKUP.get(stripped, []):
        if synonym not in bases:
            bases.append(synonym)

    expansions = list(bases)
    for base in bases[1:] + bases[:1]:
        limit = MAX_TOKEN_VARIANTS if base == token else 4
        for variant in sorted(arabic_variants(base, limit=limit)):
            if variant not in expansions:
                expansions.append(variant)
    return expansions[:MAX_TOKEN_VARIANTS]


@dataclass
class SearchAnalysis:
    normalized_search: Optional[str] = None
    matched_source_types: List[str] = field(default_factory=list)
    description_tokens: List[str] = field(default_factory=list)
    description_summary: Optional[str] = None
    matched_tokens: List[str] = field(default_factory=list)
    token_variants: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self):
        return {
            "normalizedSearch": self.normalized_search,
            "matchedSourceTypes": self.matched_source_types,
            "descriptionTokens": self.description_tokens,
            "descriptionSummary": self.description_summary,
            "matchedTokens": self.matched_tokens,
            "tokenVariants": self.token_variants,
        }


def analyze(free_text: Optional[str]) -> SearchAnalysis:
    """Map a free-text search onto source types and description tokens"""
    normalized = normalize_text(free_text)
    if not normalized:
        return SearchAnalysis()

    matched: Set[str] = set()
    description_tokens: List[str] = []
    matched_tokens: List[str] = []

    for token in normalized.split(" "):
        if token in SEARCH_STOP_WORDS:
            continue
        hits = KEYWORD_LOOKUP.get(token) or KEYWORD_LOOKUP.get(strip_article(token))
        if hits:
            matched.update(hits)
            if token not in matched_tokens:
                matched_tokens.append(token)
            continue
        if token not in description_tokens:
            description_tokens.append(token)

    ordered_types = [source_type for source_type, _ in SOURCE_TYPE_KEYWORDS if source_type in matched]

    return SearchAnalysis(
        normalized_search=normalized,
        matched_source_types=ordered_types,
        description_tokens=description_tokens,
        description_summary=", ".join(description_tokens) or None,
        matched_tokens=matched_tokens,
        token_variants={token: expand_token(token) for token in description_tokens + matched_tokens},
    )


def build_description_filter(column, analysis: SearchAnalysis, include_matched: bool = False):
    """
    AND over description tokens, each an OR of ILIKE clauses over its variants.
    include_matched also requires the vocabulary words, for records that have
    no category column. Returns None when there is nothing to filter on.
    """
    tokens = analysis.description_tokens + (analysis.matched_tokens if include_matched else [])
    clauses = []
    for token in tokens:
        variants = analysis.token_variants.get(token) or [token]
        likes = [column.ilike(f"%{variant}%") for variant in variants]
        clauses.append(likes[0] if len(likes) == 1 else or_(*likes))

    if not clauses:
        return None
    return clauses[0] if len(clauses) == 1 else and_(*clauses)
