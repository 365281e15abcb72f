"""Policy, claim and rider stores: in-memory (memory.py) and SQLAlchemy (postgres_real.py)."""

from .memory import InMemoryClaimStore, InMemoryPolicyStore, InMemoryRiderStore

__all__ = ["InMemoryClaimStore", "InMemoryPolicyStore", "InMemoryRiderStore"]
