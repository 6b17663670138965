"""Execution of operator graphs with runtime shape checks and kernel dispatch."""

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

import numpy as np
import torch

from .catalog import OperatorCatalog
from .config import RuntimeConfig
from .dtype import DataType, DeviceKind
from .errors import DeviceMismatch, KernelFailure, OpwellError, ShapeMismatch
from .ir import EMPTY_VAR_NAME, OperatorNode, TensorTy, VarName
from .kernels.registry import KernelKey, KernelRegistry, KernelSpec
from .shape import infer_shapes
from .tensor import Scope, Tensor

if TYPE_CHECKING:
    from .graph import Graph

logger = logging.getLogger(__name__)


class ExecutionContext:
    """Device kind plus the variables bound for one execution."""

    def __init__(self, device, scope: Optional[Scope] = None):
        self.device = DeviceKind.parse(device)
        self.scope = scope if scope is not None else Scope()

    @property
    def torch_device(self) -> torch.device:
        return torch.device(self.device.value)

    def var_dtype(self, name: VarName) -> DataType:
        tensor = self.scope.find(name)
        if tensor is None or not tensor.is_initialized:
            raise ShapeMismatch(f"variable {name!r} is not bound", runtime=True)
        return tensor.dtype

    def var_types(self, names) -> Dict[VarName, TensorTy]:
        out = {}
        for name in names:
            tensor = self.scope.find(name)
            if tensor is not None and tensor.is_initialized:
                out[name] = tensor.meta
        return out


def _bind_slots(decls, bindings: Mapping[str, tuple], resolve) -> Dict[str, Any]:
    """Slot -> tensor, or slot -> list of tensors for duplicable slots."""
    bound = {}
    for slot, decl in decls.items():
        names = bindings.get(slot)
        if not names:
            continue
        tensors = [resolve(n) for n in names]
        bound[slot] = tensors if decl.duplicable else tensors[0]
    return bound


def _has_nan_inf(tensor: Tensor) -> bool:
    if not tensor.dtype.is_floating:
        return False
    data = tensor.data
    if isinstance(data, torch.Tensor):
        return not bool(torch.isfinite(data).all().item())
    return not bool(np.isfinite(data).all())


def run_operator(catalog: OperatorCatalog,
                 node: OperatorNode,
                 ctx: ExecutionContext,
                 config: Optional[RuntimeConfig] = None) -> KernelSpec:
    """
    Execute one operator node.

    Shapes are re-inferred strictly from the bound tensors before the kernel
    runs. Outputs are written to fresh tensors that replace the scope
    entries only when the kernel succeeds.

    Args:
        catalog: Catalog providing the operator and its kernels
        node: Node to execute
        ctx: Execution context
        config: Runtime configuration

    Returns:
        The kernel that ran
    """
    config = config or RuntimeConfig()
    info = catalog.lookup(node.type)
    scope = ctx.scope

    inferred = infer_shapes(info, node, ctx.var_types(node.input_names()), is_runtime=True)

    for name in node.input_names():
        tensor = scope.find(name)
        if tensor is not None and tensor.is_initialized and tensor.device != ctx.device:
            raise DeviceMismatch(
                f"input {name!r} is on {tensor.device.value}, execution device is {ctx.device.value}",
                node.type)

    kernel = catalog.kernels.dispatch(node, ctx, info.kernel_dtype_slot)

    holders = {name: Tensor() for name in node.output_names() if name != EMPTY_VAR_NAME}
    inputs = _bind_slots(info.schema.inputs, node.inputs, scope.find)
    outputs = _bind_slots(info.schema.outputs, node.outputs, holders.get)

    try:
        kernel.fn(inputs, outputs, node.attrs, ctx)
    except OpwellError:
        raise
    except Exception as exc:
        raise KernelFailure(f"kernel {kernel.key} failed: {exc}", node.type) from exc

    for name, tensor in holders.items():
        if not tensor.is_initialized:
            raise KernelFailure(f"kernel {kernel.key} did not write output {name!r}", node.type)
        if config.verify_kernel_outputs and tensor.meta != inferred[name]:
            expected = inferred[name]
            raise KernelFailure(
                f"kernel {kernel.key} wrote {name!r} as {list(tensor.shape)}/{tensor.dtype.value}, "
                f"inferred {list(expected.shape)}/{expected.dtype.value}",
                node.type)
        if config.check_nan_inf and _has_nan_inf(tensor):
            raise KernelFailure(f"output {name!r} contains NaN or Inf", node.type)

    for name, tensor in holders.items():
        scope[name] = tensor
    return kernel


@dataclass
class CompiledOp:
    """A graph node with the kernel selected from its static dtypes."""
    node: OperatorNode
    key: Optional[KernelKey]
    kernel: Optional[KernelSpec]
    error: Optional[str] = None


class ExecutionEngine:
    """
    Executable form of a graph on one device.
    Kernels are pre-selected from static metadata and re-dispatched against
    the concrete tensors on every run.
    """

    def __init__(self,
                 graph: "Graph",
                 device=None,
                 catalog: Optional[OperatorCatalog] = None,
                 config: Optional[RuntimeConfig] = None):
        self.graph = graph
        self.catalog = catalog if catalog is not None else graph.catalog
        self.config = config if config is not None else RuntimeConfig.from_env()
        self.device = DeviceKind.parse(device) if device is not None else self.config.resolve_device()
        self.compiled_ops = self._compile()

    def _compile(self) -> List[CompiledOp]:
        compiled = []
        for node in self.graph.ops:
            info = self.catalog.lookup(node.type)
            try:
                key = KernelRegistry.key_for(
                    node, self.device, lambda n: self.graph.var(n).dtype, info.kernel_dtype_slot)
            except (OpwellError, KeyError) as exc:
                compiled.append(CompiledOp(node=node, key=None, kernel=None, error=str(exc)))
                continue
            compiled.append(CompiledOp(node=node, key=key, kernel=self.catalog.kernels.find_kernel(key)))
        return compiled

    def validate(self) -> List[str]:
        """Validate the compiled engine."""
        issues = []
        for i, cop in enumerate(self.compiled_ops):
            if cop.error:
                issues.append(f"Op {i} ({cop.node.type}): {cop.error}")
            elif cop.kernel is None:
                issues.append(f"Op {i} ({cop.node.type}) has no kernel for {cop.key}")
        return issues

    def get_kernel_summary(self) -> Dict[str, int]:
        """Get summary of kernel usage per (device, dtype)."""
        summary = {}
        for cop in self.compiled_ops:
            if cop.kernel:
                name = f"{cop.key.device.value}/{cop.key.dtype.value}"
                summary[name] = summary.get(name, 0) + 1
        return summary

    def run(self, feed: Optional[Mapping[str, Any]] = None, scope: Optional[Scope] = None) -> Scope:
        """
        Execute every node in order.

        Args:
            feed: Variable name -> data to bind before running
            scope: Existing scope to run in

        Returns:
            The scope holding every variable after execution
        """
        scope = scope if scope is not None else Scope()
        for name, value in (feed or {}).items():
            scope.feed(name, value)
        ctx = ExecutionContext(self.device, scope)
        for cop in self.compiled_ops:
            kernel = run_operator(self.catalog, cop.node, ctx, self.config)
            logger.debug("Ran %s with %s", cop.node.type, kernel.name)
        return scope

    def __call__(self, feed: Optional[Mapping[str, Any]] = None) -> Scope:
        return self.run(feed)


def compile(graph: "Graph",
            device=None,
            catalog: Optional[OperatorCatalog] = None,
            config: Optional[RuntimeConfig] = None) -> ExecutionEngine:
    """
    Main compilation interface.

    Args:
        graph: Graph to execute
        device: Target device kind; resolved from the config when omitted
        catalog: Catalog override, defaults to the graph's
        config: Runtime configuration, read from the environment by default

    Returns:
        Compiled execution engine
    """
    engine = ExecutionEngine(graph, device=device, catalog=catalog, config=config)

    issues = engine.validate()
    if issues:
        for issue in issues:
            warnings.warn(f"Compilation issue: {issue}")

    return engine
