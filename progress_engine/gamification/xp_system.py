"""
XP and Leveling System

Converts evaluated task outcomes into bounded, category-scoped XP and derives
levels from the running totals.

Leveling Curve:
- XP_PER_LEVEL (1000) XP per level, in every category and overall
- Levels cap at MAX_LEVEL (100)
- Reaching MAX_LEVEL overall unlocks prestige, which restarts the overall
  level and counts one prestige

XP Award Rules:
- Every category award is rounded and clamped to 10..100
- Category keys are matched by id or name, case-insensitively; unknown
  categories are dropped
- Overall XP is the sum of the category deltas

Levels are pure functions of the totals, so awards applied in any order
reach the same state.
"""

from bisect import bisect_right
import math
from numbers import Real
from typing import Any, Dict, Optional
import logging

from pydantic import BaseModel, Field

from progress_engine.config import MAX_LEVEL, MAX_TASK_XP, MIN_TASK_XP, XP_PER_LEVEL
from progress_engine.exceptions import InvalidStateError
from progress_engine.models.category import normalize_category_id
from progress_engine.models.progress import CategoryLevel, OverallLevel, UserProgress
from progress_engine.resilience.metrics import record_xp_awarded

logger = logging.getLogger(__name__)


def clamp_xp(value: Any) -> Optional[int]:
    """
    Round and clamp a raw XP value to [MIN_TASK_XP, MAX_TASK_XP]

    Returns None for non-numeric or non-finite input.
    """
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    if not math.isfinite(value):
        return None
    return min(max(round(value), MIN_TASK_XP), MAX_TASK_XP)


def normalize_category_xp(category_xp: Dict[str, Any]) -> Dict[str, int]:
    """
    Map raw {category name/id: xp} to {catalog id: clamped xp}

    Keys naming the same category are merged (the last one wins) before
    clamping, so one category never receives more than MAX_TASK_XP.
    """
    merged: Dict[str, Any] = {}
    for key, raw in (category_xp or {}).items():
        category_id = normalize_category_id(key)
        if category_id is None:
            logger.debug(f"Dropping XP entry for unknown category {key!r}")
            continue
        merged[category_id] = raw

    normalized: Dict[str, int] = {}
    for category_id, raw in merged.items():
        amount = clamp_xp(raw)
        if amount is None:
            logger.debug(f"Dropping XP entry {category_id!r}={raw!r}")
            continue
        normalized[category_id] = amount
    return normalized


class LevelCurve:
    """Monotonic level thresholds: total XP needed to reach each level"""

    def __init__(self, xp_per_level: int = XP_PER_LEVEL, max_level: int = MAX_LEVEL):
        self.xp_per_level = xp_per_level
        self.max_level = max_level
        # thresholds[n] = total XP at which level n + 1 starts
        self.thresholds = [level * xp_per_level for level in range(max_level)]

    def level_for(self, total_xp: int) -> int:
        return max(1, min(bisect_right(self.thresholds, total_xp), self.max_level))

    def level_info(self, total_xp: int) -> Dict[str, Any]:
        """
        Calculate level from total XP

        Returns:
            {
                'current_level': int,
                'xp_in_current_level': int,
                'xp_to_next_level': int (0 at max level),
                'total_xp_for_next_level': int or None at max level,
                'max_level': bool
            }
        """
        level = self.level_for(total_xp)
        level_start = self.thresholds[level - 1]
        at_max = level >= self.max_level
        next_threshold = None if at_max else self.thresholds[level]
        return {
            "current_level": level,
            "xp_in_current_level": total_xp - level_start,
            "xp_to_next_level": 0 if at_max else next_threshold - total_xp,
            "total_xp_for_next_level": next_threshold,
            "max_level": at_max,
        }


class XPAward(BaseModel):
    """Result of one XP application"""
    awarded: Dict[str, int] = Field(default_factory=dict)
    total: int = 0
    leveled_up: list[str] = Field(default_factory=list)  # categories that gained a level
    old_overall_level: int = 1
    new_overall_level: int = 1


class XPLedger:
    """
    Applies XP to a user's progress

    apply() works on an in-memory UserProgress so that completion paths can
    award XP inside the same store mutation that records the completion.
    """

    def __init__(self, store, curve: Optional[LevelCurve] = None):
        self.store = store
        self.curve = curve or LevelCurve()

    def apply(self, progress: UserProgress, category_xp: Dict[str, Any]) -> XPAward:
        awarded = normalize_category_xp(category_xp)
        award = XPAward(
            awarded=awarded,
            total=sum(awarded.values()),
            old_overall_level=progress.overall.level,
            new_overall_level=progress.overall.level,
        )
        if not awarded:
            return award

        for category_id, amount in awarded.items():
            entry = progress.categories.setdefault(category_id, CategoryLevel())
            old_level = entry.level
            entry.xp += amount
            entry.level = self.curve.level_for(entry.xp)
            if entry.level > old_level:
                award.leveled_up.append(category_id)
                logger.info(f"User {progress.user_id} reached {category_id} level {entry.level}")

        progress.overall.xp += award.total
        progress.overall.level = self.curve.level_for(progress.overall.xp)
        progress.stats.today_xp += award.total
        award.new_overall_level = progress.overall.level

        if award.new_overall_level > award.old_overall_level:
            logger.info(
                f"User {progress.user_id} leveled up! "
                f"{award.old_overall_level} → {award.new_overall_level}"
            )
        record_xp_awarded(awarded)
        return award

    async def award(self, user_id: str, category_xp: Dict[str, Any]) -> XPAward:
        """Award XP as a standalone update"""
        award = await self.store.mutate(user_id, lambda progress: self.apply(progress, category_xp))
        logger.info(f"Awarded {award.total} XP to user {user_id}: {award.awarded}")
        return award

    def can_prestige(self, progress: UserProgress) -> bool:
        return progress.overall.level >= self.curve.max_level

    async def prestige(self, user_id: str) -> OverallLevel:
        """
        Restart the overall level at 1 and count one prestige

        Category levels are kept.

        Raises:
            InvalidStateError: overall level is below MAX_LEVEL
        """
        def _prestige(progress: UserProgress) -> OverallLevel:
            if not self.can_prestige(progress):
                raise InvalidStateError(
                    f"Prestige requires overall level {self.curve.max_level}",
                    current_state=str(progress.overall.level),
                    user_id=user_id,
                    operation="prestige"
                )
            progress.overall = OverallLevel(level=1, xp=0, prestige=progress.overall.prestige + 1)
            return progress.overall.model_copy()

        overall = await self.store.mutate(user_id, _prestige)
        logger.info(f"User {user_id} prestiged (prestige {overall.prestige})")
        return overall

    async def get_user_xp(self, user_id: str) -> Dict[str, Any]:
        """
        Get user's XP and level info

        Returns:
            {
                'overall': {...level_info, 'total_xp', 'prestige'},
                'categories': {category_id: {...level_info, 'total_xp'}},
                'can_prestige': bool
            }
        """
        progress = await self.store.get(user_id)
        categories = {
            category_id: {**self.curve.level_info(entry.xp), "total_xp": entry.xp}
            for category_id, entry in progress.categories.items()
        }
        return {
            "overall": {
                **self.curve.level_info(progress.overall.xp),
                "total_xp": progress.overall.xp,
                "prestige": progress.overall.prestige,
            },
            "categories": categories,
            "can_prestige": self.can_prestige(progress),
        }
