"""Convergence-gated hint reveals."""

from .gate import RevealGate
from .models import RevealDecision, RevealHint, RevealReason, RevealRecord

__all__ = ["RevealDecision", "RevealGate", "RevealHint", "RevealReason", "RevealRecord"]
