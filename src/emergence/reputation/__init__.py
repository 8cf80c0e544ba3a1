"""Reputation: rewards, bonuses, decay and the per-attester ledger."""

from .calculator import ReputationCalculator, ReputationUpdate
from .ledger import ReputationLedger

__all__ = ["ReputationCalculator", "ReputationLedger", "ReputationUpdate"]
