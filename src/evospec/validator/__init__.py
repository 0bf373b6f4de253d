"""Phase-gated validation of EvoSpec documents.

Phases
------
1 Structural     — required blocks, node shape
2 Referential    — unique ids, NodeRef targets resolve
3 Semantic       — field types, contract levels
4 Evolution      — version / history ledger consistency
5 Generation     — code-generation readiness
6 Verifiability  — contracts carry checkable expressions
"""

from .models import (
    ALL_PHASES,
    ErrorLevel,
    ValidationError,
    ValidationPhase,
    ValidationResult,
    parse_phases,
)
from .validator import SpecValidator, validate_yaml

__all__ = [
    "ALL_PHASES",
    "ErrorLevel",
    "ValidationError",
    "ValidationPhase",
    "ValidationResult",
    "parse_phases",
    "SpecValidator",
    "validate_yaml",
]
