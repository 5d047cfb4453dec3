"""
Feature Engineering for Heartbeat Logs

Turns a session's heartbeat ledger into the timing features the bot
classifier scores.
"""
from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd

from poa.models.session import AttentionSession


@dataclass(frozen=True)
class HeartbeatFeatures:
    elapsed_ms: int
    heartbeat_count: int
    expected_heartbeats: int
    intervals: List[float]
    mean_interval: float
    std_interval: float
    max_deviation: float

    @property
    def interval_count(self) -> int:
        return len(self.intervals)

    def to_dict(self) -> dict:
        return {
            "elapsedMs": self.elapsed_ms,
            "heartbeatCount": self.heartbeat_count,
            "expectedHeartbeats": self.expected_heartbeats,
            "intervalCount": self.interval_count,
            "meanInterval": self.mean_interval,
            "stdInterval": self.std_interval,
        }


def heartbeat_frame(session: AttentionSession) -> pd.DataFrame:
    """
    Build a DataFrame of heartbeats in append order.

    Columns:
    - timestamp: client-asserted time (ms)
    - received_at: server receipt time (ms)
    - interval: gap to the previous heartbeat's client timestamp (NaN for the first)
    - latency: received_at - timestamp
    """
    df = pd.DataFrame(
        [(hb.timestamp, hb.received_at) for hb in session.heartbeats],
        columns=["timestamp", "received_at"],
        dtype="float64",
    )
    # Append order, not sorted: out-of-order client clocks show up as negative gaps
    df["interval"] = df["timestamp"].diff()
    df["latency"] = df["received_at"] - df["timestamp"]
    return df


def engineer_features(session: AttentionSession, now: int, nominal_interval_ms: int) -> HeartbeatFeatures:
    """
    Compute timing features for a session as of ``now``.

    Args:
        session: Session snapshot.
        now: Current time in ms. Ignored once the session has ended.
        nominal_interval_ms: Expected heartbeat cadence.
    """
    elapsed = session.elapsed(now)
    df = heartbeat_frame(session)
    intervals = df["interval"].dropna().to_numpy()

    if intervals.size:
        mean_interval = float(np.mean(intervals))
        # Population standard deviation
        std_interval = float(np.std(intervals))
        max_deviation = float(np.max(np.abs(intervals - nominal_interval_ms)))
    else:
        mean_interval = std_interval = max_deviation = 0.0

    return HeartbeatFeatures(
        elapsed_ms=elapsed,
        heartbeat_count=len(df),
        expected_heartbeats=max(0, elapsed // nominal_interval_ms),
        intervals=intervals.tolist(),
        mean_interval=mean_interval,
        std_interval=std_interval,
        max_deviation=max_deviation,
    )
