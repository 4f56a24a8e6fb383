"""
Model evaluators for implicit ODEs f(x_dot, x, p, t) = 0.

ModelEvaluator
    Abstract base class: residual, Jacobian, responses and their derivatives.
ResponseDerivatives
    Named tuple (dg_dx, dg_dp) returned by ``response_derivatives``.
AutogradModelEvaluator
    Evaluator from plain callables, derivatives via ``torch.func.jacrev``.
LinearModelEvaluator
    Linear model with closed-form derivatives and steady state.
"""

from pseudotransient.model_evaluator._autograd_model_evaluator import (
    AutogradModelEvaluator,
)
from pseudotransient.model_evaluator._linear_model_evaluator import (
    LinearModelEvaluator,
)
from pseudotransient.model_evaluator._model_evaluator import (
    ModelEvaluator,
    ResponseDerivatives,
    as_response,
    check_parameters,
)

__all__ = [
    "AutogradModelEvaluator",
    "LinearModelEvaluator",
    "ModelEvaluator",
    "ResponseDerivatives",
    "as_response",
    "check_parameters",
]
