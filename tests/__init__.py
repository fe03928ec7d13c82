"""
Test Suite for Laboratory Synthetic Data

Provides tests for:
- Reference data and the schema registry
- Parametric generators (all families)
- Model-based synthesis
- Validation modules (invariants, fidelity, disclosure)
- Configuration management
- Orchestration
"""

__version__ = "1.0.0"
