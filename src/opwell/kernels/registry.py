"""Kernel registry mapping (operator type, device, dtype) to kernel functions."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, TYPE_CHECKING

from ..dtype import DataType, DeviceKind
from ..errors import CatalogFrozen, DuplicateKernel, NoKernelFound, ShapeMismatch
from ..ir import OperatorNode

if TYPE_CHECKING:
    from ..engine import ExecutionContext

logger = logging.getLogger(__name__)

# (inputs, outputs, attrs, ctx) -> None; results are written to the output tensors
KernelFn = Callable[[Mapping[str, Any], Mapping[str, Any], Mapping[str, Any], "ExecutionContext"], None]


@dataclass(frozen=True)
class KernelKey:
    """Identity of one registered kernel."""
    op_type: str
    device: DeviceKind
    dtype: DataType

    def __post_init__(self):
        object.__setattr__(self, "device", DeviceKind.parse(self.device))
        object.__setattr__(self, "dtype", DataType.parse(self.dtype))

    def __str__(self) -> str:
        return f"{self.op_type}[{self.device.value}, {self.dtype.value}]"


@dataclass(frozen=True)
class KernelSpec:
    """A registered kernel implementation."""
    key: KernelKey
    fn: KernelFn

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))


class KernelRegistry:
    """
    Dispatch table for kernel implementations.
    Filled during initialization, read-only after ``freeze()``.
    """

    def __init__(self):
        self.kernels: Dict[KernelKey, KernelSpec] = {}
        self._frozen = False

    def register(self, op_type: str, device, dtype, fn: KernelFn) -> KernelSpec:
        """
        Register a kernel implementation.

        Args:
            op_type: Operator type the kernel implements
            device: Device kind the kernel runs on
            dtype: Data type of the operator's dtype-selecting input
            fn: Kernel function

        Returns:
            The registered kernel spec
        """
        if self._frozen:
            raise CatalogFrozen("cannot register kernels after initialization", op_type)
        key = KernelKey(op_type, device, dtype)
        if key in self.kernels:
            raise DuplicateKernel(key)
        spec = KernelSpec(key=key, fn=fn)
        self.kernels[key] = spec
        logger.debug("Registered kernel %s -> %s", key, spec.name)
        return spec

    def __contains__(self, key: KernelKey) -> bool:
        return key in self.kernels

    def find_kernel(self, key: KernelKey) -> Optional[KernelSpec]:
        """Exact lookup, no fallback to other devices or dtypes."""
        return self.kernels.get(key)

    def dispatch(self,
                 node: OperatorNode,
                 ctx: "ExecutionContext",
                 dtype_slot: Optional[str] = None) -> KernelSpec:
        """
        Select the kernel for a node in an execution context.

        Args:
            node: Operator instance to execute
            ctx: Execution context supplying the device and bound tensors
            dtype_slot: Input slot whose tensor selects the data type;
                defaults to the first bound input

        Returns:
            Matching kernel spec
        """
        key = self.key_for(node, ctx.device, ctx.var_dtype, dtype_slot)
        kernel = self.kernels.get(key)
        if kernel is None:
            raise NoKernelFound(key)
        logger.debug("Dispatch %s -> %s", key, kernel.name)
        return kernel

    @staticmethod
    def key_for(node: OperatorNode,
                device,
                dtype_of: Callable[[str], DataType],
                dtype_slot: Optional[str] = None) -> KernelKey:
        if dtype_slot is None:
            bound = [slot for slot, names in node.inputs.items() if names]
            if not bound:
                raise ShapeMismatch("operator has no bound input to select a kernel dtype", node.type)
            dtype_slot = bound[0]
        names = node.input(dtype_slot)
        if not names:
            raise ShapeMismatch(
                f"kernel dtype slot {dtype_slot!r} is not bound", node.type, slots=(dtype_slot,))
        return KernelKey(node.type, device, dtype_of(names[0]))

    def list_kernels(self, op_type: Optional[str] = None) -> List[KernelSpec]:
        """List all registered kernels, optionally filtered by op type."""
        return [k for k in self.kernels.values() if op_type is None or k.key.op_type == op_type]

    def op_types(self) -> List[str]:
        return sorted({k.op_type for k in self.kernels})

    def validate_for_device(self, device) -> Dict[str, List[str]]:
        """
        Report which kernels are available on a device.

        Args:
            device: Device kind

        Returns:
            Dictionary mapping op types to the dtypes with a kernel
        """
        device = DeviceKind.parse(device)
        available: Dict[str, List[str]] = {}
        for key in self.kernels:
            if key.device == device:
                available.setdefault(key.op_type, []).append(key.dtype.value)
        return available

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen
