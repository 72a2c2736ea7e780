"""
Practice problem sourcing.

This module provides:
- ProblemPoolStore: shared, append-only store of generated problems
- AttemptService: per-learner answer history and mastery-by-attempts
- ProblemPoolArbitrator: pool-first problem selection with AI fallback

Problem sources:
- pool: unseen pool problem
- retry: pool problem the learner got wrong before
- ai_generated: generated on demand and saved back to the pool
"""

from .attempts import (
    AttemptHistoryStore,
    AttemptService,
    AttemptStats,
    InMemoryAttemptHistoryStore,
    MasteryCheck,
    ProblemAttempt,
    ProblemSource,
)
from .pool_arbitrator import (
    MIN_POOL_SIZE,
    PoolProblemResult,
    PoolSource,
    ProblemPoolArbitrator,
    SideEffectOutcome,
)
from .problem_pool import InMemoryProblemPoolStore, PoolStats, ProblemPoolEntry, ProblemPoolStore

__all__ = [
    "AttemptHistoryStore",
    "AttemptService",
    "AttemptStats",
    "InMemoryAttemptHistoryStore",
    "MasteryCheck",
    "ProblemAttempt",
    "ProblemSource",
    "MIN_POOL_SIZE",
    "PoolProblemResult",
    "PoolSource",
    "ProblemPoolArbitrator",
    "SideEffectOutcome",
    "InMemoryProblemPoolStore",
    "PoolStats",
    "ProblemPoolEntry",
    "ProblemPoolStore",
]
