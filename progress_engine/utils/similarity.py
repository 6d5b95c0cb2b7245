"""
Near-duplicate title detection

Titles are compared case-insensitively. Two titles count as duplicates when
they are equal or when their Levenshtein similarity is above the configured
threshold (0.8 by default).
"""
import logging
from typing import Iterable, Optional

from progress_engine.config import DUPLICATE_SIMILARITY_THRESHOLD
from progress_engine.models.task import Task

logger = logging.getLogger(__name__)


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning a into b"""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """
    Normalized similarity in [0, 1]

    (len(longer) - distance) / len(longer); two empty strings are identical.
    """
    longer = a if len(a) >= len(b) else b
    if not longer:
        return 1.0
    return (len(longer) - levenshtein_distance(a, b)) / len(longer)


def is_duplicate_title(
    existing: str,
    candidate: str,
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD
) -> bool:
    left = existing.strip().lower()
    right = candidate.strip().lower()
    if left == right:
        return True
    return similarity(left, right) > threshold


def find_duplicate(
    candidate: str,
    catalog_tasks: Iterable[Task],
    user_tasks: Iterable[Task] = (),
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD
) -> Optional[Task]:
    """
    First task whose title is a near-duplicate of candidate

    The global catalog is searched before the user's own tasks.
    """
    for source, tasks in (("catalog", catalog_tasks), ("user", user_tasks)):
        for task in tasks:
            if is_duplicate_title(task.title, candidate, threshold):
                logger.info(f"Title '{candidate}' duplicates {source} task {task.id} ('{task.title}')")
                return task
    return None
