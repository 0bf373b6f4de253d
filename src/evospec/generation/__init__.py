"""Generation / evolution orchestration engine.

Modules
-------
base        — requests, results, collaborator protocols
loop        — the bounded generate → validate → repair loop
engine      — Generation and Evolution orchestrators
materialize — persist → commit → tag with partial-failure handling
"""

from .base import (
    EvolutionRequest,
    GenerationRequest,
    GenerationResult,
    ModelAdapter,
    Validator,
    VCSAdapter,
)
from .engine import EvolutionOrchestrator, GenerationOrchestrator, evolve_spec, generate_spec
from .loop import RepairLoop, extract_document
from .materialize import MaterializeResult, materialize, release_tag

__all__ = [
    "EvolutionRequest",
    "GenerationRequest",
    "GenerationResult",
    "ModelAdapter",
    "Validator",
    "VCSAdapter",
    "EvolutionOrchestrator",
    "GenerationOrchestrator",
    "evolve_spec",
    "generate_spec",
    "RepairLoop",
    "extract_document",
    "MaterializeResult",
    "materialize",
    "release_tag",
]
