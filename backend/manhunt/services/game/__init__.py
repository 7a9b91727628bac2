"""Game domain services: geometry, missions, ledger and the session loop.

This package contains the game mechanics that HTTP routes and socket
handlers call into, keeping transport concerns separated from the rules.
"""

from .errors import (  # noqa: F401
    GameError, InsufficientFunds, InvariantViolation, NotFound, NotPermitted,
    TransientPersistenceFailure, ValidationError,
)
from .registry import SessionRegistry  # noqa: F401
