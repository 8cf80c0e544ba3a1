"""Emergence Core - configuration, logging, errors and orchestration.

``EmergenceCore`` lives in ``emergence.core.engine`` and is re-exported from
the top-level package.
"""

from .config import ConsensusConfig, CoreSettings, DecayKind, clear_config_cache, get_config
from .exceptions import (
    ConfigException,
    ConflictError,
    EmergenceException,
    IntegrityError,
    NotFoundError,
    PersistenceError,
    PolicyError,
    RateLimitedError,
    RevealTooEarlyError,
    ValidationException,
)
from .logging import (
    AttestationLogger,
    attestation_logger,
    configure_logging,
    get_logger,
)

__all__ = [
    "AttestationLogger",
    "ConfigException",
    "ConflictError",
    "ConsensusConfig",
    "CoreSettings",
    "DecayKind",
    "EmergenceException",
    "IntegrityError",
    "NotFoundError",
    "PersistenceError",
    "PolicyError",
    "RateLimitedError",
    "RevealTooEarlyError",
    "ValidationException",
    "attestation_logger",
    "clear_config_cache",
    "configure_logging",
    "get_config",
    "get_logger",
]
