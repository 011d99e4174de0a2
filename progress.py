"""Learning progress: points, study streak, quiz analytics and lesson state."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from achievements import Achievement, AchievementTracker
from day_keys import day_key, days_between, parse_day_key
from storage import KeyValueStore

LOGGER = logging.getLogger(__name__)

LESSON_COMPLETION_POINTS = 50


class Keys:
    completed_lessons = "completedLessons"
    quiz_scores = "quizScores"
    total_points = "totalPoints"
    streak = "streak"
    last_accessed_positions = "lastAccessedPositions"
    last_study_date = "lastStudyDate"
    last_activity_date = "lastActivityDate"
    quiz_progress = "quizProgress"
    quiz_history = "quizHistory"
    total_attempts = "totalAttempts"
    average_score = "averageScore"


def lesson_key(module_id: int, lesson_id: int) -> str:
    return f"{module_id}_{lesson_id}"


@dataclass(frozen=True)
class ProgressState:
    total_points: int
    streak_days: int
    last_study_day_key: Optional[str]
    total_quiz_attempts: int
    average_score: float
    last_activity_day_key: Optional[str] = None


@dataclass
class WrongAnswer:
    question_id: int
    selected_answer: int
    correct_answer: int
    timestamp: str


@dataclass
class QuizProgress:
    module_id: int
    lesson_id: int
    attempts: int
    best_score: int
    last_score: int
    completed_at: str
    wrong_answers: List[WrongAnswer] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "QuizProgress":
        wrong = [WrongAnswer(**item) for item in payload.get("wrong_answers", [])]
        return cls(
            module_id=int(payload["module_id"]),
            lesson_id=int(payload["lesson_id"]),
            attempts=int(payload["attempts"]),
            best_score=int(payload["best_score"]),
            last_score=int(payload["last_score"]),
            completed_at=str(payload["completed_at"]),
            wrong_answers=wrong,
        )


class ProgressLedger:
    """Owns :class:`ProgressState` and persists it after every mutation."""

    def __init__(
        self,
        store: KeyValueStore,
        achievements: AchievementTracker,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now().astimezone())
        self.achievements = achievements
        self._total_points = _read_int(store, Keys.total_points)
        self._streak = _read_int(store, Keys.streak)
        self._total_attempts = _read_int(store, Keys.total_attempts)
        self._average_score = _read_float(store, Keys.average_score)
        self._last_study = _read_day_key(store, Keys.last_study_date)
        self._last_activity = _read_day_key(store, Keys.last_activity_date)
        self._completed: Set[str] = set(_read_list(store, Keys.completed_lessons))
        achievements.attach(self)

    # -- ProgressSource --------------------------------------------------
    @property
    def completed_lesson_count(self) -> int:
        return len(self._completed)

    @property
    def streak_days(self) -> int:
        return self._streak

    @property
    def total_points(self) -> int:
        return self._total_points

    @property
    def earned_points(self) -> int:
        """Points from study alone, excluding achievement bonuses."""
        return self._total_points - self.achievements.bonus_points

    @property
    def total_quiz_attempts(self) -> int:
        return self._total_attempts

    @property
    def average_score(self) -> float:
        return self._average_score

    def add_points(self, points: int) -> None:
        self._total_points += points
        self._store.set(Keys.total_points, self._total_points)

    # -- operations ------------------------------------------------------
    @property
    def state(self) -> ProgressState:
        return ProgressState(
            total_points=self._total_points,
            streak_days=self._streak,
            last_study_day_key=self._last_study,
            total_quiz_attempts=self._total_attempts,
            average_score=self._average_score,
            last_activity_day_key=self._last_activity,
        )

    @property
    def completed_lessons(self) -> Set[str]:
        return set(self._completed)

    def record_lesson_completed(self, key: str) -> bool:
        """Mark *key* completed; only the first completion earns points."""
        if key in self._completed:
            LOGGER.debug("Lesson %s already completed", key)
            return False
        self._completed.add(key)
        self._store.set(Keys.completed_lessons, sorted(self._completed))
        self.add_points(LESSON_COMPLETION_POINTS)
        LOGGER.info("Lesson %s completed (+%d points)", key, LESSON_COMPLETION_POINTS)
        self.record_study_activity(self._today())
        self.check_achievements()
        return True

    def record_quiz_result(self, score: int, total: int) -> float:
        """Fold a quiz result into the running average; returns its percentage."""
        if total <= 0:
            raise ValueError(f"Quiz total must be positive, got {total}")
        if not 0 <= score <= total:
            raise ValueError(f"Quiz score {score} is outside 0..{total}")

        percentage = score * 100.0 / total
        self._total_attempts += 1
        n = self._total_attempts
        self._average_score = (self._average_score * (n - 1) + percentage) / n
        self._store.update({Keys.total_attempts: n, Keys.average_score: self._average_score})
        self.add_points(int(round(percentage)))
        LOGGER.debug("Quiz %d/%d recorded; average now %.2f over %d attempts", score, total, self._average_score, n)

        self.record_study_activity(self._today())
        if score == total:
            self.achievements.check_quiz(score, total)
        self.check_achievements()
        return percentage

    def touch_study_day(self, today: str) -> None:
        """Called once per foreground: break the streak after a skipped day."""
        if self._last_study is not None and days_between(self._last_study, today) > 1:
            LOGGER.info("Streak reset: last study day %s, today %s", self._last_study, today)
            self._streak = 0
        self._last_study = today
        self._store.update({Keys.streak: self._streak, Keys.last_study_date: today})

    def record_study_activity(self, today: str) -> int:
        """Extend the streak on the first study activity of a new day."""
        if self._last_activity == today:
            return self._streak
        if self._last_activity is not None and days_between(self._last_activity, today) == 1:
            self._streak += 1
        else:
            self._streak = 1
        self._last_activity = today
        self._store.update({Keys.streak: self._streak, Keys.last_activity_date: today})
        LOGGER.debug("Study streak is %d day(s)", self._streak)
        return self._streak

    def check_achievements(self) -> List[Achievement]:
        return self.achievements.check()

    # -- per-lesson records ----------------------------------------------
    def save_quiz_progress(
        self,
        module_id: int,
        lesson_id: int,
        score: int,
        total: int,
        wrong_answers: Iterable[WrongAnswer] = (),
    ) -> QuizProgress:
        key = lesson_key(module_id, lesson_id)
        previous = self.quiz_progress(module_id, lesson_id)
        progress = QuizProgress(
            module_id=module_id,
            lesson_id=lesson_id,
            attempts=(previous.attempts if previous else 0) + 1,
            best_score=max(score, previous.best_score if previous else 0),
            last_score=score,
            completed_at=self._clock().isoformat(),
            wrong_answers=list(wrong_answers),
        )
        all_progress = self._store.get(Keys.quiz_progress)
        all_progress = dict(all_progress) if isinstance(all_progress, dict) else {}
        all_progress[key] = asdict(progress)
        history = _read_list(self._store, Keys.quiz_history)
        history.append(asdict(progress))
        self._store.update({Keys.quiz_progress: all_progress, Keys.quiz_history: history})

        self.record_quiz_result(score, total)
        return progress

    def quiz_progress(self, module_id: int, lesson_id: int) -> Optional[QuizProgress]:
        all_progress = self._store.get(Keys.quiz_progress)
        if not isinstance(all_progress, dict):
            return None
        payload = all_progress.get(lesson_key(module_id, lesson_id))
        if payload is None:
            return None
        try:
            return QuizProgress.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Ignoring corrupt quiz progress for %s", lesson_key(module_id, lesson_id))
            return None

    def quiz_history(self) -> List[QuizProgress]:
        history = []
        for payload in _read_list(self._store, Keys.quiz_history):
            try:
                history.append(QuizProgress.from_dict(payload))
            except (KeyError, TypeError, ValueError):
                LOGGER.warning("Skipping corrupt quiz history entry")
        return history

    def save_quiz_score(self, module_id: int, lesson_id: int, score: int) -> None:
        self._save_mapping_value(Keys.quiz_scores, lesson_key(module_id, lesson_id), score)

    def quiz_score(self, module_id: int, lesson_id: int) -> Optional[int]:
        return _read_mapping(self._store, Keys.quiz_scores).get(lesson_key(module_id, lesson_id))

    def save_last_position(self, module_id: int, lesson_id: int, page: int) -> None:
        self._save_mapping_value(Keys.last_accessed_positions, lesson_key(module_id, lesson_id), page)

    def last_position(self, module_id: int, lesson_id: int) -> int:
        return _read_mapping(self._store, Keys.last_accessed_positions).get(lesson_key(module_id, lesson_id), 0)

    def snapshot(self) -> Dict[str, Any]:
        """The persisted scalars, for sync."""
        return {
            Keys.total_points: self._total_points,
            Keys.streak: self._streak,
            Keys.total_attempts: self._total_attempts,
            Keys.average_score: self._average_score,
            Keys.completed_lessons: sorted(self._completed),
            Keys.last_study_date: self._last_study,
        }

    def _save_mapping_value(self, store_key: str, key: str, value: int) -> None:
        mapping = _read_mapping(self._store, store_key)
        mapping[key] = int(value)
        self._store.set(store_key, mapping)

    def _today(self) -> str:
        return day_key(self._clock())


def _read_int(store: KeyValueStore, key: str) -> int:
    try:
        return max(0, int(store.get(key, 0)))
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring corrupt integer under %s", key)
        return 0


def _read_float(store: KeyValueStore, key: str) -> float:
    try:
        return min(100.0, max(0.0, float(store.get(key, 0.0))))
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring corrupt number under %s", key)
        return 0.0


def _read_day_key(store: KeyValueStore, key: str) -> Optional[str]:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        parse_day_key(str(raw))
    except ValueError:
        LOGGER.warning("Ignoring corrupt day key %r under %s", raw, key)
        return None
    return str(raw)


def _read_list(store: KeyValueStore, key: str) -> List[Any]:
    raw = store.get(key)
    return list(raw) if isinstance(raw, list) else []


def _read_mapping(store: KeyValueStore, key: str) -> Dict[str, int]:
    raw = store.get(key)
    if not isinstance(raw, dict):
        return {}
    mapping = {}
    for item_key, value in raw.items():
        try:
            mapping[str(item_key)] = int(value)
        except (TypeError, ValueError):
            LOGGER.warning("Dropping corrupt %s entry %s", key, item_key)
    return mapping
