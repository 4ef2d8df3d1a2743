"""
Category matching.

Suggests a category for a transaction description from category names and
from the user's categorized history.
"""

from .category_matcher import (
    CategoryMatcher,
    NameMatch,
    are_words_similar,
    calculate_similarity,
    detect_category_from_description,
    find_name_match,
    levenshtein_distance,
    match_category_by_name,
    normalize_description,
    suggest_category,
)

__all__ = [
    "CategoryMatcher",
    "NameMatch",
    "normalize_description",
    "levenshtein_distance",
    "are_words_similar",
    "calculate_similarity",
    "find_name_match",
    "match_category_by_name",
    "detect_category_from_description",
    "suggest_category",
]
