"""Error taxonomy for operator registration, graph construction and execution.

Three families are kept apart:

* ``RegistrationError`` - programming errors detected while the catalog is
  being populated. They abort initialization and are never recoverable.
* ``GraphError`` - the caller built an invalid graph. Raised synchronously
  from graph construction.
* ``ExecutionError`` - the specific execution request failed. No retry or
  fallback is attempted.
"""

from typing import Any, Optional, Tuple


class OpwellError(Exception):
    """Base class for all opwell errors."""

    def __init__(self, message: str, op_type: Optional[str] = None):
        self.op_type = op_type
        if op_type:
            message = f"[{op_type}] {message}"
        super().__init__(message)


# Registration-time (fatal)

class RegistrationError(OpwellError):
    """A catalog or dispatch-table registration conflict."""


class DuplicateOperatorType(RegistrationError):
    def __init__(self, op_type: str):
        super().__init__("operator type is already registered", op_type)


class DuplicateKernel(RegistrationError):
    def __init__(self, key):
        self.key = key
        super().__init__(
            f"kernel already registered for device={key.device.value}, "
            f"dtype={key.dtype.value}",
            key.op_type,
        )


class SchemaFrozen(RegistrationError):
    """A schema declaration was attempted after registration completed."""


class CatalogFrozen(RegistrationError):
    """Registration was attempted after the catalog was frozen."""


# Graph-construction-time

class GraphError(OpwellError):
    """The graph being built is invalid."""


class UnknownOperatorType(GraphError):
    def __init__(self, op_type: str):
        super().__init__("operator type is not registered", op_type)


class SchemaViolation(GraphError):
    """Bad use of a declared slot or attribute."""

    def __init__(self, message: str, op_type: Optional[str] = None,
                 name: Optional[str] = None, value: Any = None):
        self.name = name
        self.value = value
        super().__init__(message, op_type)


class ShapeMismatch(GraphError):
    """Static or runtime shape/dtype disagreement."""

    def __init__(self, message: str, op_type: Optional[str] = None,
                 slots: Tuple[str, ...] = (), dim: Optional[int] = None,
                 values: Tuple[Any, ...] = (), runtime: bool = False):
        self.slots = tuple(slots)
        self.dim = dim
        self.values = tuple(values)
        self.runtime = runtime
        phase = "runtime" if runtime else "static"
        super().__init__(f"{message} ({phase} check)", op_type)


class IncompleteGradientRequest(GraphError):
    def __init__(self, op_type: str, missing: Tuple[str, ...]):
        self.missing = tuple(missing)
        super().__init__(
            f"no output gradient supplied for differentiable outputs {list(self.missing)}",
            op_type,
        )


# Execution-time

class ExecutionError(OpwellError):
    """The execution of a single operator failed."""


class NoKernelFound(ExecutionError):
    def __init__(self, key):
        self.key = key
        super().__init__(
            f"no kernel registered for device={key.device.value}, "
            f"dtype={key.dtype.value}",
            key.op_type,
        )


class DeviceMismatch(ExecutionError):
    """An input tensor lives on a different device than the execution context."""


class KernelFailure(ExecutionError):
    """A kernel raised, or produced outputs that disagree with inference."""
