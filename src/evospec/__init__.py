"""evospec — LLM-driven generation and evolution of EvoSpec documents.

The interesting part lives in :mod:`evospec.generation`: a
generate → validate → repair loop bounded by a retry budget, plus the
version-evolution manager that keeps the document's history ledger honest.
"""

__version__ = "1.0.0"
