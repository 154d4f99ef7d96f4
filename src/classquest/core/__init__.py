"""Core business logic.

Modules:
- cohort_resolver: teacher + linked students from any member
- consistency_ledger: per-student rolling window of weekly engagement
- reward_distributor: tiered payouts when a challenge expires
- rotation_engine: create/keep/rotate/repair a cohort's weekly challenge
- transaction_coordinator: serializable transactions with bounded retry
- weekly_challenge: operations exposed to callers
- weeks: day indexes, week boundaries and school periods
"""

__all__ = [
    "cohort_resolver",
    "consistency_ledger",
    "reward_distributor",
    "rotation_engine",
    "transaction_coordinator",
    "weekly_challenge",
    "weeks",
]
