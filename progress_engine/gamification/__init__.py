"""
Gamification engines for the progress engine

This module implements the lifecycle engines that turn user activity into
progress:
- XP and leveling (category-scoped, with prestige)
- Calendar-day streak math
- 66-day habits
- Multi-day challenges
- Timeframe goals
- Shared routines
"""

from progress_engine.gamification.xp_system import XPLedger, LevelCurve, XPAward, clamp_xp
from progress_engine.gamification.streak_system import calculate_streak, longest_streak, roll_daily_stats
from progress_engine.gamification.habits import HabitEngine
from progress_engine.gamification.challenges import ChallengeEngine, is_fully_completed
from progress_engine.gamification.goals import GoalEngine, is_expired
from progress_engine.gamification.routines import RoutineEngine

__all__ = [
    "XPLedger",
    "LevelCurve",
    "XPAward",
    "clamp_xp",
    "calculate_streak",
    "longest_streak",
    "roll_daily_stats",
    "HabitEngine",
    "ChallengeEngine",
    "is_fully_completed",
    "GoalEngine",
    "is_expired",
    "RoutineEngine",
]
