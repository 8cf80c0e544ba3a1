# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Emergence Contributors

"""Emergence - emergent consensus over anonymous attestations.

Many participants answer the same question; the answer is inferred from the
shape of the resulting distribution rather than from a trusted oracle.

Architecture:
  Attestations (validated, rate-limited, content-addressed)
    → Distributions (per question, recomputed on every attestation)
    → Consensus (convergence against a progressive quorum)
    → Reputation (confidence-weighted, minority bonus, decay)
    → Reveals (hints released only once the crowd has converged)

Anti-gaming detectors are advisory. The invariant checker proves the numeric
invariants of the whole mechanism on demand or from a background monitor.

CLI entry point: ``emergence``
"""

__version__ = "0.1.0"

from .core.engine import EmergenceCore, IngestResult

__all__ = ["EmergenceCore", "IngestResult", "__version__"]
