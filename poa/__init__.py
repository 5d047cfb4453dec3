"""
Proof-of-Attention Service

This package provides:
- Attention session tracking with heartbeats
- Heuristic bot detection on heartbeat timing
- Session lifecycle with accept/reject verdicts
- Proof issuance collaborators (artifact storage, token minting)
"""

__version__ = "1.0.0"

from poa.inference.bot_classifier import BotClassifier
from poa.lifecycle import AttentionLifecycle
from poa.models.store import SessionStore, SessionSweeper

__all__ = [
    "AttentionLifecycle",
    "BotClassifier",
    "SessionStore",
    "SessionSweeper",
]
