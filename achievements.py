"""Achievement definitions and unlock bookkeeping."""
from __future__ import annotations

import enum
import logging
import weakref
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from storage import KeyValueStore

LOGGER = logging.getLogger(__name__)

UNLOCKED_KEY = "unlockedAchievements"


class AchievementKind(enum.Enum):
    LESSON_COMPLETION = "lessonCompletion"
    QUIZ_MASTERY = "quizMastery"
    STREAK = "streak"
    TOTAL_POINTS = "totalPoints"
    PERFECT_QUIZ = "perfectQuiz"


@dataclass(frozen=True)
class Achievement:
    id: str
    title: str
    description: str
    points: int
    kind: AchievementKind
    requirement: int
    unlocked: bool = False
    unlocked_at: Optional[datetime] = None


DEFAULT_ACHIEVEMENTS = (
    Achievement("first_lesson", "First Steps", "Complete your first lesson", 50, AchievementKind.LESSON_COMPLETION, 1),
    Achievement("perfect_quiz", "Perfect Score", "Get 100% on a quiz", 100, AchievementKind.PERFECT_QUIZ, 1),
    Achievement("streak_7", "Week Warrior", "Maintain a 7-day streak", 150, AchievementKind.STREAK, 7),
    Achievement("lessons_10", "Knowledge Seeker", "Complete 10 lessons", 200, AchievementKind.LESSON_COMPLETION, 10),
    Achievement("quiz_master", "Quiz Master", "Average 90% over 5 quizzes", 150, AchievementKind.QUIZ_MASTERY, 90),
    Achievement("points_1000", "Dedicated Learner", "Earn 1000 points from study", 250, AchievementKind.TOTAL_POINTS, 1000),
)

QUIZ_MASTERY_MIN_ATTEMPTS = 5


class ProgressSource(Protocol):
    """What the tracker needs to read from, and credit back to, the ledger."""

    @property
    def completed_lesson_count(self) -> int: ...

    @property
    def streak_days(self) -> int: ...

    @property
    def earned_points(self) -> int: ...

    @property
    def total_quiz_attempts(self) -> int: ...

    @property
    def average_score(self) -> float: ...

    def add_points(self, points: int) -> None: ...


UnlockCallback = Callable[[Achievement], None]


class AchievementTracker:
    """Evaluates achievement predicates against a progress source.

    The source is held through a weak reference so the ledger owns the tracker
    and not the other way round.
    """

    def __init__(
        self,
        store: KeyValueStore,
        definitions=DEFAULT_ACHIEVEMENTS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._source_ref: Optional[weakref.ReferenceType] = None
        self._callbacks: List[UnlockCallback] = []
        self.recently_unlocked: Optional[Achievement] = None
        self._achievements: List[Achievement] = self._load(definitions)

    def attach(self, source: ProgressSource) -> None:
        self._source_ref = weakref.ref(source)

    def on_unlock(self, callback: UnlockCallback) -> None:
        self._callbacks.append(callback)

    @property
    def achievements(self) -> List[Achievement]:
        return list(self._achievements)

    @property
    def bonus_points(self) -> int:
        """Points already credited for unlocked achievements."""
        return sum(item.points for item in self._achievements if item.unlocked)

    def is_unlocked(self, achievement_id: str) -> bool:
        return any(item.id == achievement_id and item.unlocked for item in self._achievements)

    def check(self) -> List[Achievement]:
        """Unlock every locked achievement whose predicate now holds."""
        source = self._source()
        if source is None:
            return []

        unlocked = []
        for index, achievement in enumerate(self._achievements):
            if achievement.unlocked or not self._satisfied(achievement, source):
                continue
            unlocked.append(self._unlock(index, source))
        return unlocked

    def check_quiz(self, score: int, total: int) -> Optional[Achievement]:
        """Unlock the first locked perfect-score achievement when *score* is full marks."""
        source = self._source()
        if source is None or score != total:
            return None
        for index, achievement in enumerate(self._achievements):
            if achievement.kind is AchievementKind.PERFECT_QUIZ and not achievement.unlocked:
                return self._unlock(index, source)
        return None

    def _satisfied(self, achievement: Achievement, source: ProgressSource) -> bool:
        kind = achievement.kind
        if kind is AchievementKind.LESSON_COMPLETION:
            return source.completed_lesson_count >= achievement.requirement
        if kind is AchievementKind.STREAK:
            return source.streak_days >= achievement.requirement
        if kind is AchievementKind.TOTAL_POINTS:
            return source.earned_points >= achievement.requirement
        if kind is AchievementKind.QUIZ_MASTERY:
            return (
                source.total_quiz_attempts >= QUIZ_MASTERY_MIN_ATTEMPTS
                and source.average_score >= achievement.requirement
            )
        # Perfect scores are only unlocked from check_quiz.
        return False

    def _unlock(self, index: int, source: ProgressSource) -> Achievement:
        achievement = replace(self._achievements[index], unlocked=True, unlocked_at=self._clock())
        self._achievements[index] = achievement

        unlocked_map = self._unlocked_map()
        unlocked_map[achievement.id] = achievement.unlocked_at.isoformat()
        self._store.set(UNLOCKED_KEY, unlocked_map)

        LOGGER.info("Achievement unlocked: %s (+%d points)", achievement.id, achievement.points)
        source.add_points(achievement.points)
        self.recently_unlocked = achievement
        for callback in self._callbacks:
            try:
                callback(achievement)
            except Exception:
                LOGGER.exception("Achievement callback failed for %s", achievement.id)
        return achievement

    def _source(self) -> Optional[ProgressSource]:
        source = self._source_ref() if self._source_ref else None
        if source is None:
            LOGGER.debug("No progress source attached; skipping achievement check")
        return source

    def _unlocked_map(self) -> Dict[str, str]:
        raw = self._store.get(UNLOCKED_KEY)
        if not isinstance(raw, dict):
            if raw is not None:
                LOGGER.warning("Ignoring corrupt %s value", UNLOCKED_KEY)
            return {}
        return dict(raw)

    def _load(self, definitions) -> List[Achievement]:
        unlocked_map = self._unlocked_map()
        loaded = []
        for definition in definitions:
            stamp = unlocked_map.get(definition.id)
            if stamp is None:
                loaded.append(definition)
                continue
            try:
                unlocked_at: Optional[datetime] = datetime.fromisoformat(str(stamp))
            except ValueError:
                LOGGER.warning("Corrupt unlock time for %s; keeping it unlocked without a time", definition.id)
                unlocked_at = None
            loaded.append(replace(definition, unlocked=True, unlocked_at=unlocked_at))
        return loaded
