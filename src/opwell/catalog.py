"""Process-wide catalog of operator types."""

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import CatalogFrozen, DuplicateKernel, DuplicateOperatorType, RegistrationError, UnknownOperatorType
from .grad import GradientMaker, build_gradient
from .ir import OperatorNode, TensorTy, VarName
from .kernels.registry import KernelFn, KernelKey, KernelRegistry
from .schema import OpSchema
from .shape import ShapeContext, infer_shapes

logger = logging.getLogger(__name__)

InferShapeFn = Callable[[ShapeContext], None]
# (device, dtype) -> kernel function
KernelTable = Mapping[Tuple[Any, Any], KernelFn]


@dataclass(frozen=True)
class OpInfo:
    """Everything the catalog knows about one operator type."""
    type: str
    schema: OpSchema
    infer_shape: InferShapeFn
    grad_maker: Optional[GradientMaker] = None
    no_need_buffer: Tuple[str, ...] = ()
    kernel_dtype_slot: Optional[str] = None

    @property
    def has_gradient(self) -> bool:
        return self.grad_maker is not None


class OperatorCatalog:
    """
    Registry of operator types and their kernels.

    Populate it with ``register``/``register_kernel`` during initialization,
    then call ``freeze()``. After that the catalog is read-only and lookups
    take no lock.
    """

    def __init__(self):
        self._ops: Dict[str, OpInfo] = {}
        self.kernels = KernelRegistry()
        self._lock = threading.Lock()
        self._frozen = False

    def register(self,
                 op_type: str,
                 schema: OpSchema,
                 infer_shape: InferShapeFn,
                 grad_maker: Optional[GradientMaker] = None,
                 kernels: Optional[KernelTable] = None,
                 no_need_buffer: Sequence[str] = (),
                 kernel_dtype_slot: Optional[str] = None) -> OpInfo:
        """
        Register an operator type.

        Args:
            op_type: Unique operator type name
            schema: Declared inputs, outputs and attributes
            infer_shape: Shape/dtype inference rule
            grad_maker: Builds the backward nodes, None if not differentiable
            kernels: Mapping of (device, dtype) to kernel functions
            no_need_buffer: Input slots whose contents the kernels never read
            kernel_dtype_slot: Input slot that selects the kernel dtype

        Returns:
            The catalog entry
        """
        with self._lock:
            if self._frozen:
                raise CatalogFrozen("cannot register operators after initialization", op_type)
            if op_type in self._ops:
                raise DuplicateOperatorType(op_type)
            if schema.op_type != op_type:
                raise RegistrationError(f"schema is declared for {schema.op_type!r}", op_type)
            for slot in tuple(no_need_buffer) + ((kernel_dtype_slot,) if kernel_dtype_slot else ()):
                if slot not in schema.inputs:
                    raise RegistrationError(f"{slot!r} is not a declared input", op_type)

            # Check every kernel before touching any state so a failure leaves nothing behind
            keys = [KernelKey(op_type, device, dtype) for device, dtype in (kernels or {})]
            seen = set()
            for key in keys:
                if key in self.kernels or key in seen:
                    raise DuplicateKernel(key)
                seen.add(key)

            schema.freeze()
            info = OpInfo(
                type=op_type,
                schema=schema,
                infer_shape=infer_shape,
                grad_maker=grad_maker,
                no_need_buffer=tuple(no_need_buffer),
                kernel_dtype_slot=kernel_dtype_slot,
            )
            for key, fn in zip(keys, (kernels or {}).values()):
                self.kernels.register(key.op_type, key.device, key.dtype, fn)
            self._ops[op_type] = info
            logger.debug("Registered operator %s (%d kernels)", op_type, len(keys))
            return info

    def register_kernel(self, op_type: str, device, dtype, fn: KernelFn):
        """Register a kernel separately from its operator; order does not matter."""
        with self._lock:
            if self._frozen:
                raise CatalogFrozen("cannot register kernels after initialization", op_type)
            return self.kernels.register(op_type, device, dtype, fn)

    def freeze(self):
        """Close registration. Kernels for unregistered operator types are an error."""
        with self._lock:
            orphans = [t for t in self.kernels.op_types() if t not in self._ops]
            if orphans:
                raise RegistrationError(f"kernels registered for unknown operator types {orphans}")
            self._frozen = True
            self.kernels.freeze()
        logger.info("Operator catalog frozen with %d operator types", len(self._ops))

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Lookup

    def lookup(self, op_type: str) -> OpInfo:
        info = self._ops.get(op_type)
        if info is None:
            raise UnknownOperatorType(op_type)
        return info

    def __contains__(self, op_type: str) -> bool:
        return op_type in self._ops

    def __len__(self) -> int:
        return len(self._ops)

    def op_types(self) -> List[str]:
        return sorted(self._ops)

    # Graph construction helpers

    def create_operator(self,
                        op_type: str,
                        attrs: Optional[Mapping[str, Any]] = None,
                        inputs: Optional[Mapping[str, Any]] = None,
                        outputs: Optional[Mapping[str, Any]] = None) -> OperatorNode:
        """
        Create a validated operator node.

        Args:
            op_type: Registered operator type
            attrs: Attribute values; defaults are filled in
            inputs: Input slot -> variable name(s)
            outputs: Output slot -> variable name(s)

        Returns:
            Immutable operator node
        """
        info = self.lookup(op_type)
        node = OperatorNode(op_type, inputs or {}, outputs or {}, {})
        info.schema.validate_bindings(node.inputs, node.outputs)
        return OperatorNode(op_type, node.inputs, node.outputs, info.schema.validate(attrs))

    def infer_shapes(self,
                     node: OperatorNode,
                     var_types: Mapping[VarName, TensorTy],
                     is_runtime: bool = False) -> Dict[VarName, TensorTy]:
        return infer_shapes(self.lookup(node.type), node, var_types, is_runtime)

    def build_gradient(self, node: OperatorNode, output_grad_names: Mapping[VarName, VarName],
                       no_grad_set: Iterable[VarName] = ()):
        return build_gradient(self, node, output_grad_names, no_grad_set)

    def summary(self) -> Mapping[str, Dict[str, Any]]:
        """Per operator: attributes, gradient availability and kernel keys."""
        out = {}
        for op_type, info in sorted(self._ops.items()):
            out[op_type] = {
                'attrs': list(info.schema.attrs),
                'has_gradient': info.has_gradient,
                'kernels': [str(k.key) for k in self.kernels.list_kernels(op_type)],
            }
        return MappingProxyType(out)


_global_catalog: Optional[OperatorCatalog] = None
_global_lock = threading.Lock()


def init_catalog(registrations: Optional[Iterable[Callable[[OperatorCatalog], None]]] = None,
                 catalog: Optional[OperatorCatalog] = None) -> OperatorCatalog:
    """
    Run registration functions in sequence and freeze the catalog.

    Args:
        registrations: Callables taking the catalog; defaults to the
            built-in operators
        catalog: Catalog to fill; a fresh one by default

    Returns:
        The frozen catalog
    """
    if registrations is None:
        from .ops import REGISTRATIONS
        registrations = REGISTRATIONS
    catalog = catalog if catalog is not None else OperatorCatalog()
    for register in registrations:
        register(catalog)
    catalog.freeze()
    return catalog


def get_catalog() -> OperatorCatalog:
    """Get the process-wide catalog, initializing it on first use."""
    global _global_catalog
    if _global_catalog is None:
        with _global_lock:
            if _global_catalog is None:
                _global_catalog = init_catalog()
    return _global_catalog
