"""Progress and gamification engine: completions, habits, challenges, goals and XP"""

__version__ = "0.1.0"
