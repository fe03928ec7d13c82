"""
Model-Based Synthesis

Fit a model to a real source sub-table and sample synthetic rows from it:
- Distribution fitting with KS goodness of fit
- Sequential conditional synthesis over grid keys, categoricals and numerics
- Parametric and model-based generation strategies
"""

from .fitting import DistributionFitter, DistributionParams
from .model import (
    SequentialSynthesizer,
    SynthesisModel,
    CategoricalFieldModel,
    NumericFieldModel,
)
from .strategy import (
    GenerationStrategy,
    ParametricStrategy,
    ModelBasedStrategy,
    make_strategy,
)

__all__ = [
    "DistributionFitter",
    "DistributionParams",
    "SequentialSynthesizer",
    "SynthesisModel",
    "CategoricalFieldModel",
    "NumericFieldModel",
    "GenerationStrategy",
    "ParametricStrategy",
    "ModelBasedStrategy",
    "make_strategy",
]
