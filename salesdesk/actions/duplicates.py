"""Near-duplicate client detection.

Matching is case-insensitive and tolerant of punctuation and legal suffixes,
so "Acme Corp" and "ACME corp." are the same company. The goal is to catch
near-duplicate entry before a plan runs, not to enforce uniqueness.

Similarity is reported as a descriptor rather than a raw score:
- high: names are equal once normalised
- medium: one normalised name contains the other
- low: names share most of their words or are nearly identical character-wise
"""

from __future__ import annotations

import re
import unicodedata
from difflib import SequenceMatcher
from typing import TYPE_CHECKING

from loguru import logger

from salesdesk.actions.types import DuplicateCandidate, Similarity

if TYPE_CHECKING:
    from salesdesk.actions.store import DataStore

# Legal-form tokens that do not distinguish one company from another.
_LEGAL_TOKENS = frozenset(
    {
        "corp",
        "corporation",
        "inc",
        "incorporated",
        "co",
        "company",
        "ltd",
        "limited",
        "llc",
        "gmbh",
        "plc",
        "주식회사",
        "유한회사",
        "주",
    }
)
_NON_WORD = re.compile(r"[^\w\s]+")
_SIMILARITY_RANK: dict[Similarity, int] = {"high": 0, "medium": 1, "low": 2}
_MIN_CONTAINMENT_LENGTH = 2
_TOKEN_OVERLAP_THRESHOLD = 0.5
_CHARACTER_RATIO_THRESHOLD = 0.8


def normalize_company_name(name: str) -> str:
    """Case-fold, strip punctuation and legal-form tokens, collapse whitespace."""
    text = unicodedata.normalize("NFKC", name).casefold().replace("㈜", " ")
    text = _NON_WORD.sub(" ", text)
    tokens = [token for token in text.split() if token not in _LEGAL_TOKENS]
    if not tokens:
        # The whole name was a legal form; keep it rather than match everything.
        return " ".join(text.split())
    return " ".join(tokens)


def compare_names(proposed: str, existing: str) -> Similarity | None:
    """Classify how similar two company names are. None means not similar."""
    left = normalize_company_name(proposed)
    right = normalize_company_name(existing)
    if not left or not right:
        return None

    left_compact = left.replace(" ", "")
    right_compact = right.replace(" ", "")
    if left_compact == right_compact:
        return "high"

    shorter, longer = sorted((left_compact, right_compact), key=len)
    if len(shorter) >= _MIN_CONTAINMENT_LENGTH and shorter in longer:
        return "medium"

    left_tokens = set(left.split())
    right_tokens = set(right.split())
    overlap = len(left_tokens & right_tokens) / len(left_tokens | right_tokens)
    if overlap >= _TOKEN_OVERLAP_THRESHOLD:
        return "low"
    if SequenceMatcher(None, left_compact, right_compact).ratio() >= _CHARACTER_RATIO_THRESHOLD:
        return "low"
    return None


def _best(similarities: list[Similarity | None]) -> Similarity | None:
    found = [s for s in similarities if s is not None]
    if not found:
        return None
    return min(found, key=_SIMILARITY_RANK.__getitem__)


def find_duplicate_clients(
    store: DataStore,
    *,
    user_id: str,
    company_name: str | None,
    brand_name: str | None = None,
    exclude_id: str | None = None,
    limit: int = 5,
) -> list[DuplicateCandidate]:
    """Find the acting user's existing clients whose names resemble the proposed ones.

    Args:
        store: Data-store collaborator (read-only use)
        user_id: Acting user; only this user's clients are considered
        company_name: Proposed company name
        brand_name: Proposed brand name, compared against both existing names
        exclude_id: Client to ignore (the record being updated)
        limit: Maximum number of candidates returned

    Returns:
        Candidates ranked high, medium, low, then by company name
    """
    proposed = [name.strip() for name in (company_name, brand_name) if name and name.strip()]
    if not proposed:
        return []

    rows = store.select("clients", {}, user_id=user_id)
    candidates: list[DuplicateCandidate] = []
    for row in rows:
        if exclude_id is not None and row["id"] == exclude_id:
            continue
        existing = [name for name in (row.get("company_name"), row.get("brand_name")) if name]
        similarity = _best([compare_names(p, e) for p in proposed for e in existing])
        if similarity is None:
            continue
        candidates.append(
            DuplicateCandidate(
                id=row["id"],
                company_name=row["company_name"],
                brand_name=row.get("brand_name"),
                similarity=similarity,
            )
        )

    candidates.sort(key=lambda c: (_SIMILARITY_RANK[c.similarity], c.company_name.casefold(), c.id))
    if candidates:
        logger.info(
            "Duplicate client candidates found",
            user_id=user_id,
            company_name=company_name,
            count=len(candidates),
        )
    return candidates[:limit]
