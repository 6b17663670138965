"""
opwell - operator catalog, kernel dispatch and gradient graph construction.

Operators register a schema, a shape-inference rule, an optional gradient
maker and their kernels into a catalog. Graphs are built from catalog
entries, differentiated by appending backward operators, and executed by
dispatching each node to the kernel for its device and data type.
"""

__version__ = "0.1.0"

from .errors import (
    OpwellError,
    RegistrationError,
    DuplicateOperatorType,
    DuplicateKernel,
    SchemaFrozen,
    CatalogFrozen,
    GraphError,
    UnknownOperatorType,
    SchemaViolation,
    ShapeMismatch,
    IncompleteGradientRequest,
    ExecutionError,
    NoKernelFound,
    DeviceMismatch,
    KernelFailure,
)
from .dtype import DataType, DeviceKind
from .ir import UNKNOWN_DIM, GradientSpec, OperatorNode, TensorTy
from .schema import AttrType, OpSchema
from .shape import ShapeContext, infer_shapes
from .kernels.registry import KernelKey, KernelRegistry, KernelSpec
from .grad import GRAD_SUFFIX, build_gradient, default_grad_maker, grad_var_name
from .catalog import OpInfo, OperatorCatalog, get_catalog, init_catalog
from .graph import Graph
from .tensor import Scope, Tensor
from .config import RuntimeConfig
from .probe import probe, HardwareConfig, DeviceInfo
from .engine import ExecutionContext, ExecutionEngine, compile, run_operator

__all__ = [
    # Catalog and graph building
    'OperatorCatalog',
    'OpInfo',
    'get_catalog',
    'init_catalog',
    'Graph',
    'OpSchema',
    'AttrType',
    'ShapeContext',
    'infer_shapes',
    'build_gradient',
    'default_grad_maker',
    'grad_var_name',
    'GRAD_SUFFIX',

    # Dispatch and execution
    'KernelRegistry',
    'KernelKey',
    'KernelSpec',
    'ExecutionContext',
    'ExecutionEngine',
    'compile',
    'run_operator',
    'Scope',
    'Tensor',
    'RuntimeConfig',
    'probe',
    'HardwareConfig',
    'DeviceInfo',

    # Types
    'DataType',
    'DeviceKind',
    'TensorTy',
    'OperatorNode',
    'GradientSpec',
    'UNKNOWN_DIM',

    # Errors
    'OpwellError',
    'RegistrationError',
    'DuplicateOperatorType',
    'DuplicateKernel',
    'SchemaFrozen',
    'CatalogFrozen',
    'GraphError',
    'UnknownOperatorType',
    'SchemaViolation',
    'ShapeMismatch',
    'IncompleteGradientRequest',
    'ExecutionError',
    'NoKernelFound',
    'DeviceMismatch',
    'KernelFailure',

    '__version__',
]
