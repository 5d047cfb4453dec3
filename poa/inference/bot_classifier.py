"""
Bot Classifier - Heuristic Scoring of Heartbeat Patterns

Scores how bot-like a session's heartbeat pattern looks. Penalties are
independent and add up, capped at 1.0.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from poa.config import AttentionConfig
from poa.models.features import HeartbeatFeatures, engineer_features
from poa.models.session import AttentionSession

logger = logging.getLogger(__name__)

SPARSE_PENALTY = 0.3
REGULAR_PENALTY = 0.4
IRREGULAR_PENALTY = 0.2
SHORT_PENALTY = 0.3
SILENT_PENALTY = 0.5

# Interval checks only apply with more intervals than this
MIN_INTERVALS = 3


@dataclass(frozen=True)
class BotScore:
    score: float
    penalties: Dict[str, float] = field(default_factory=dict)
    features: Optional[HeartbeatFeatures] = None

    def to_dict(self) -> dict:
        data = {"botScore": self.score, "penalties": dict(self.penalties)}
        if self.features is not None:
            data["features"] = self.features.to_dict()
        return data


class BotClassifier:
    """
    Scores bot-likeness for a session snapshot.

    Scoring is a pure function of the snapshot, the current time and the
    configured thresholds.
    """

    def __init__(
        self,
        nominal_interval_ms: int = 30_000,
        min_duration_ms: int = 10_000,
        tolerance_ms: int = 1000,
        threshold: float = 0.7,
    ):
        """
        Args:
            nominal_interval_ms: Expected heartbeat cadence.
            min_duration_ms: Minimum attention duration.
            tolerance_ms: An interval closer than this to the cadence counts as
                machine-regular.
            threshold: Scores strictly above this are rejected.
        """
        self.nominal_interval_ms = nominal_interval_ms
        self.min_duration_ms = min_duration_ms
        self.tolerance_ms = tolerance_ms
        self.threshold = threshold

    @classmethod
    def from_config(cls, config: AttentionConfig) -> "BotClassifier":
        return cls(
            nominal_interval_ms=config.heartbeat_interval_ms,
            min_duration_ms=config.min_attention_ms,
            tolerance_ms=config.regularity_tolerance_ms,
            threshold=config.bot_score_threshold,
        )

    def evaluate(self, session: AttentionSession, now: int) -> BotScore:
        """
        Score a session and report which penalties fired.

        The capped sum is rounded to 4 decimals so sums of tenths compare
        exactly against the threshold. 0.3 + 0.4 is already the same double
        as 0.7 without rounding, so a sparse and perfectly regular session
        sits on the threshold and is not rejected.
        """
        features = engineer_features(session, now, self.nominal_interval_ms)
        penalties = {}

        # Fewer than half the heartbeats the cadence calls for
        if features.heartbeat_count < features.expected_heartbeats * 0.5:
            penalties["sparse"] = SPARSE_PENALTY

        if features.interval_count > MIN_INTERVALS:
            # Every gap right on the cadence looks like scripted replay
            if features.max_deviation < self.tolerance_ms:
                penalties["too_regular"] = REGULAR_PENALTY
            # Wildly varying gaps look like randomized scripting
            if features.std_interval > features.mean_interval * 0.5:
                penalties["too_irregular"] = IRREGULAR_PENALTY

        if features.elapsed_ms < self.min_duration_ms:
            penalties["too_short"] = SHORT_PENALTY

        if features.heartbeat_count == 0:
            penalties["no_heartbeats"] = SILENT_PENALTY

        score = round(min(sum(penalties.values()), 1.0), 4)
        return BotScore(score=score, penalties=penalties, features=features)

    def score(self, session: AttentionSession, now: int) -> float:
        return self.evaluate(session, now).score

    def is_bot(self, score: float) -> bool:
        return score > self.threshold
