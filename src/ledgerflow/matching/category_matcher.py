"""Category suggestion by text similarity.

Two independent algorithms:

1. Name matching (`match_category_by_name`): compares a description with the
   category names of the requested type. Exact normalized match wins
   immediately, then containment, then Levenshtein similarity.

2. Historical matching (`detect_category_from_description`): finds earlier
   categorized transactions of the same type with a similar description and
   returns their most frequent category.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from ..schemas.transaction import Category, LedgerTransaction, TransactionType

logger = logging.getLogger(__name__)

# Name matching: minimum similarity to consider and to return a category
NAME_MATCH_THRESHOLD = 0.6
# Bonus stored on containment matches
CONTAINMENT_BONUS = 0.5

# Historical matching: minimum word similarity for a transaction to count
HISTORY_MATCH_THRESHOLD = 0.7
# Shorter description length for description-level containment
MIN_CONTAINMENT_LENGTH = 5

# Word-level scores
EXACT_WORD_SCORE = 1.0
CONTAINED_WORD_SCORE = 0.85
SIMILAR_WORD_SCORE = 0.7
MIN_CONTAINED_WORD_LENGTH = 4
MIN_WORD_LENGTH = 3

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_description(text: str) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    text = _NON_WORD_RE.sub(" ", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning `a` into `b`."""
    return int(Levenshtein.distance(a, b))


def are_words_similar(word1: str, word2: str) -> bool:
    """
    Check if two words are close enough to count as a fuzzy match.

    Short words (<= 5 chars) allow a 20% edit ratio, longer ones 35%.
    """
    if word1 == word2:
        return True
    if word1 in word2 or word2 in word1:
        return True

    max_len = max(len(word1), len(word2))
    threshold = 0.2 if max_len <= 5 else 0.35
    return levenshtein_distance(word1, word2) / max_len <= threshold


def calculate_similarity(text1: str, text2: str) -> float:
    """
    Word-level similarity of two normalized descriptions (0.0 - 1.0).

    Each word of `text1` greedily takes its best unmatched word in `text2`:
    exact 1.0, containment 0.85 (shorter word >= 4 chars), fuzzy 0.7.
    The sum is normalized by the average word count.
    """
    words1 = [w for w in text1.split(" ") if len(w) >= MIN_WORD_LENGTH]
    words2 = [w for w in text2.split(" ") if len(w) >= MIN_WORD_LENGTH]
    if not words1 or not words2:
        return 0.0

    matched: set[int] = set()
    total = 0.0

    for w1 in words1:
        best_score = 0.0
        best_idx = -1
        for idx, w2 in enumerate(words2):
            if idx in matched:
                continue

            score = 0.0
            if w1 == w2:
                score = EXACT_WORD_SCORE
            elif min(len(w1), len(w2)) >= MIN_CONTAINED_WORD_LENGTH and (w1 in w2 or w2 in w1):
                score = CONTAINED_WORD_SCORE
            elif are_words_similar(w1, w2):
                score = SIMILAR_WORD_SCORE

            if score > best_score:
                best_score = score
                best_idx = idx

        if best_idx >= 0:
            matched.add(best_idx)
            total += best_score

    return total / ((len(words1) + len(words2)) / 2)


@dataclass
class NameMatch:
    """Best candidate found by name matching."""

    category_id: int
    score: float
    method: str  # "exact", "contains", "contained_in", "fuzzy"


def find_name_match(
    description: str,
    categories: Iterable[Category],
    type: TransactionType | str,
    threshold: float = NAME_MATCH_THRESHOLD,
) -> NameMatch | None:
    """
    Find the best category whose name matches the description.

    Containment candidates are compared on their raw ratio but stored with
    CONTAINMENT_BONUS added; later candidates compete against the stored value.
    """
    if not description:
        return None

    normalized = normalize_description(description)
    best: NameMatch | None = None

    for category in categories:
        if category.type != type:
            continue
        name = normalize_description(category.name)

        if normalized == name:
            return NameMatch(category.id, 1.0, "exact")

        if name in normalized:
            score = len(name) / len(normalized)
            if best is None or score > best.score:
                best = NameMatch(category.id, score + CONTAINMENT_BONUS, "contains")
            continue

        if normalized in name:
            score = len(normalized) / len(name)
            if best is None or score > best.score:
                best = NameMatch(category.id, score + CONTAINMENT_BONUS, "contained_in")
            continue

        max_len = max(len(normalized), len(name))
        similarity = 1 - levenshtein_distance(normalized, name) / max_len
        if similarity >= threshold and (best is None or similarity > best.score):
            best = NameMatch(category.id, similarity, "fuzzy")

    if best is not None and best.score >= threshold:
        return best
    return None


def match_category_by_name(
    description: str,
    categories: Iterable[Category],
    type: TransactionType | str,
    threshold: float = NAME_MATCH_THRESHOLD,
) -> int | None:
    """
    Suggest a category id by comparing the description with category names.

    Returns:
        Category id, or None if no candidate reaches the threshold
    """
    match = find_name_match(description, categories, type, threshold)
    return match.category_id if match else None


def detect_category_from_description(
    description: str,
    type: TransactionType | str,
    history: Iterable[LedgerTransaction],
    threshold: float = HISTORY_MATCH_THRESHOLD,
) -> int | None:
    """
    Suggest a category id from previously categorized transactions.

    A past transaction of the same type qualifies when its normalized
    description equals this one, contains/is contained in it (shorter side at
    least 5 chars), or has word similarity above `threshold`.

    Returns:
        The most common category among qualifying transactions (first
        encountered wins a tie), or None
    """
    if not description:
        return None

    normalized = normalize_description(description)
    counts: dict[int, int] = {}

    for txn in history:
        if txn.type != type or not txn.category_id:
            continue

        other = normalize_description(txn.description or "")
        if other == normalized:
            qualifies = True
        elif min(len(normalized), len(other)) >= MIN_CONTAINMENT_LENGTH and (
            normalized in other or other in normalized
        ):
            qualifies = True
        else:
            qualifies = calculate_similarity(normalized, other) > threshold

        if qualifies:
            counts[txn.category_id] = counts.get(txn.category_id, 0) + 1

    best_id: int | None = None
    best_count = 0
    for category_id, count in counts.items():
        if count > best_count:
            best_id = category_id
            best_count = count
    return best_id


class CategoryMatcher:
    """Combines historical and name matching with configurable thresholds."""

    def __init__(
        self,
        name_threshold: float = NAME_MATCH_THRESHOLD,
        history_threshold: float = HISTORY_MATCH_THRESHOLD,
    ):
        self.name_threshold = name_threshold
        self.history_threshold = history_threshold

    def suggest(
        self,
        description: str,
        type: TransactionType | str,
        categories: list[Category],
        history: list[LedgerTransaction],
    ) -> int | None:
        """Historical match first, then name match, else None."""
        category_id = detect_category_from_description(
            description, type, history, self.history_threshold
        )
        if category_id is not None:
            logger.debug(f"Category {category_id} from history for '{description}'")
            return category_id

        category_id = match_category_by_name(description, categories, type, self.name_threshold)
        if category_id is not None:
            logger.debug(f"Category {category_id} from name match for '{description}'")
        return category_id


def suggest_category(
    description: str,
    type: TransactionType | str,
    categories: list[Category],
    history: list[LedgerTransaction],
) -> int | None:
    """Suggest a category with default thresholds."""
    return CategoryMatcher().suggest(description, type, categories, history)
