"""Options for pseudo-transient adjoint sensitivity analysis."""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import torch

from pseudotransient.integration import TimeStepControl
from pseudotransient.model_evaluator import ModelEvaluator
from pseudotransient.sensitivity._exceptions import ConfigurationError

DEFAULT_PARAMETER_INDEX = 0
DEFAULT_RESPONSE_INDEX = 0
DEFAULT_MASS_MATRIX_IS_CONSTANT = True
DEFAULT_MASS_MATRIX_IS_IDENTITY = False


def _control_from_mapping(
    name: str, values: Any
) -> Optional[TimeStepControl]:
    if values is None or isinstance(values, TimeStepControl):
        return values
    if not isinstance(values, Mapping):
        raise ConfigurationError(
            f"{name} must be a mapping or TimeStepControl, "
            f"got {type(values).__name__}"
        )
    valid = {f.name for f in dataclasses.fields(TimeStepControl)}
    unknown = sorted(set(values) - valid)
    if unknown:
        raise ConfigurationError(
            f"Unknown {name} option(s) {unknown}; valid options are {sorted(valid)}"
        )
    return TimeStepControl(**values)


@dataclass(frozen=True)
class SensitivityOptions:
    """Options of a pseudo-transient adjoint sensitivity run.

    Attributes
    ----------
    parameter_index : int
        Index of the model parameter vector p_j whose sensitivities are
        computed.
    response_index : int
        Index of the model response g_k to differentiate.
    mass_matrix_is_constant : bool
        Whether df/dx_dot is constant. Must be True; the adjoint derivation
        does not hold otherwise.
    mass_matrix_is_identity : bool
        Whether df/dx_dot is the identity, which lets the adjoint model skip
        the mass matrix altogether.
    forward : TimeStepControl, optional
        Step-size control of the forward phase. When omitted,
        ``TimeStepControl.for_dtype`` of the state dtype is used.
    adjoint : TimeStepControl, optional
        Step-size control of the adjoint phase. The forward control is used
        when omitted.
    check_stability : bool
        Whether to reject a converged forward state that is linearly
        unstable. Costs one eigenvalue decomposition of size n.
    """

    parameter_index: int = DEFAULT_PARAMETER_INDEX
    response_index: int = DEFAULT_RESPONSE_INDEX
    mass_matrix_is_constant: bool = DEFAULT_MASS_MATRIX_IS_CONSTANT
    mass_matrix_is_identity: bool = DEFAULT_MASS_MATRIX_IS_IDENTITY
    forward: Optional[TimeStepControl] = None
    adjoint: Optional[TimeStepControl] = None
    check_stability: bool = True

    def forward_control(
        self, dtype: torch.dtype = torch.float64
    ) -> TimeStepControl:
        """Step-size control of the forward phase for states of ``dtype``."""
        if self.forward is not None:
            return self.forward
        return TimeStepControl.for_dtype(dtype)

    def adjoint_control(
        self, dtype: torch.dtype = torch.float64
    ) -> TimeStepControl:
        """Step-size control of the adjoint phase for states of ``dtype``."""
        if self.adjoint is not None:
            return self.adjoint
        return self.forward_control(dtype)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "SensitivityOptions":
        """Build options from a plain mapping.

        ``forward`` and ``adjoint`` may be nested mappings of
        :class:`TimeStepControl` fields.

        Raises
        ------
        ConfigurationError
            If the mapping contains unknown keys.
        """
        valid = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - valid)
        if unknown:
            raise ConfigurationError(
                f"Unknown sensitivity option(s) {unknown}; valid options are "
                f"{sorted(valid)}"
            )
        kwargs = dict(values)
        if "forward" in kwargs:
            kwargs["forward"] = _control_from_mapping(
                "forward", kwargs["forward"]
            )
        if "adjoint" in kwargs:
            kwargs["adjoint"] = _control_from_mapping(
                "adjoint", kwargs["adjoint"]
            )
        return cls(**kwargs)

    @classmethod
    def valid_parameters(cls) -> Dict[str, Any]:
        """Default options as a nested mapping accepted by :meth:`from_dict`.

        The step controls shown are the float64 defaults.
        """
        return cls(
            forward=TimeStepControl(), adjoint=TimeStepControl()
        ).to_dict()

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def validate(self, model: ModelEvaluator) -> None:
        """Validate options against the model's declared dimensions.

        Raises
        ------
        ConfigurationError
            If an index is out of range, the mass matrix is declared
            non-constant, a flag is not a boolean, or a time-step control is
            invalid.
        """
        for name in ("parameter_index", "response_index"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(
                    f"{name} must be an integer, got {value!r}"
                )
        for name in (
            "mass_matrix_is_constant",
            "mass_matrix_is_identity",
            "check_stability",
        ):
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(
                    f"{name} must be a boolean, got {getattr(self, name)!r}"
                )

        if not 0 <= self.parameter_index < model.num_parameters:
            raise ConfigurationError(
                f"parameter_index {self.parameter_index} out of range for a "
                f"model with {model.num_parameters} parameter vector(s)"
            )
        if not 0 <= self.response_index < model.num_responses:
            raise ConfigurationError(
                f"response_index {self.response_index} out of range for a "
                f"model with {model.num_responses} response(s)"
            )
        if self.mass_matrix_is_constant is not True:
            raise ConfigurationError(
                "mass_matrix_is_constant must be True: pseudo-transient "
                "adjoint sensitivities require a constant mass matrix"
            )

        for phase, control in (
            ("forward", self.forward),
            ("adjoint", self.adjoint),
        ):
            if control is None:
                continue
            try:
                control.validate()
            except (TypeError, ValueError) as err:
                raise ConfigurationError(
                    f"Invalid {phase} time-step control: {err}"
                ) from err
