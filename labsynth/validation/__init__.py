"""
Validation Module

Checks applied to generated datasets:
- Invariants: presence, non-negativity, bounds, domains, derivations and row rules
- Fidelity: source vs. synthetic similarity of base fields (model-based mode)
- Disclosure: no synthetic row reproduces a source row (model-based mode)
"""

from .invariants import (
    InvariantValidator,
    ValidationReport,
    Violation,
    ROW_RULES,
)

from .fidelity import (
    FidelityValidator,
    FidelityReport,
    NumericFidelity,
    CategoricalFidelity,
    TemporalFidelity,
)

from .disclosure import (
    DisclosureValidator,
    DisclosureReport,
    row_signatures,
)

__all__ = [
    # Invariants
    "InvariantValidator",
    "ValidationReport",
    "Violation",
    "ROW_RULES",

    # Fidelity
    "FidelityValidator",
    "FidelityReport",
    "NumericFidelity",
    "CategoricalFidelity",
    "TemporalFidelity",

    # Disclosure
    "DisclosureValidator",
    "DisclosureReport",
    "row_signatures",
]
