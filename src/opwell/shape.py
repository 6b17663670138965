"""Shape and dtype inference.

Inference runs twice for every operator: once while the graph is built
(static, dimensions <= 0 are not compared) and once right before the kernel
runs, against the concrete tensors (runtime, everything is compared). Rank
is always compared strictly.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING

from .dtype import DataType
from .errors import ShapeMismatch
from .ir import EMPTY_VAR_NAME, OperatorNode, Shape, TensorTy, VarName, is_known_dim

if TYPE_CHECKING:
    from .catalog import OpInfo


class ShapeContext:
    """View over one operator instance and the metadata of its variables."""

    def __init__(self, node: OperatorNode, var_types: Mapping[VarName, TensorTy], is_runtime: bool = False):
        self.node = node
        self.is_runtime = is_runtime
        self._var_types = var_types
        self._pending_dims: Dict[VarName, Shape] = {}
        self._pending_dtypes: Dict[VarName, DataType] = {}

    @property
    def op_type(self) -> str:
        return self.node.type

    def attr(self, name: str) -> Any:
        return self.node.attrs[name]

    # Reads

    def has_input(self, slot: str) -> bool:
        names = self.node.input(slot)
        return bool(names) and all(n in self._var_types for n in names)

    def has_output(self, slot: str) -> bool:
        return bool(self.node.output(slot))

    def _input_types(self, slot: str) -> List[TensorTy]:
        enforce_input(self, slot)
        return [self._var_types[n] for n in self.node.input(slot)]

    def input_dim(self, slot: str) -> Shape:
        return self._input_types(slot)[0].shape

    def input_dims(self, slot: str) -> List[Shape]:
        return [t.shape for t in self._input_types(slot)]

    def input_dtype(self, slot: str) -> DataType:
        return self._input_types(slot)[0].dtype

    def input_dtypes(self, slot: str) -> List[DataType]:
        return [t.dtype for t in self._input_types(slot)]

    # Writes

    def set_output_dim(self, slot: str, shape: Sequence[int], index: Optional[int] = None):
        for i, name in enumerate(self.node.output(slot)):
            if index is None or i == index:
                self._pending_dims[name] = tuple(shape)

    def set_output_dtype(self, slot: str, dtype, index: Optional[int] = None):
        for i, name in enumerate(self.node.output(slot)):
            if index is None or i == index:
                self._pending_dtypes[name] = DataType.parse(dtype)

    def set_output(self, slot: str, shape: Sequence[int], dtype, index: Optional[int] = None):
        self.set_output_dim(slot, shape, index)
        self.set_output_dtype(slot, dtype, index)

    def share_meta(self, in_slot: str, out_slot: str, in_index: int = 0, out_index: Optional[int] = None):
        """Copy shape and dtype of an input variable to output variable(s)."""
        src = self._input_types(in_slot)[in_index]
        self.set_output(out_slot, src.shape, src.dtype, out_index)

    def results(self) -> Dict[VarName, TensorTy]:
        out = {}
        for name, shape in self._pending_dims.items():
            if name in self._pending_dtypes and name != EMPTY_VAR_NAME:
                out[name] = TensorTy(shape, self._pending_dtypes[name])
        return out

    def missing_outputs(self) -> List[VarName]:
        written = self.results()
        return [n for n in self.node.output_names() if n not in written and n != EMPTY_VAR_NAME]


def enforce_input(ctx: ShapeContext, slot: str):
    if not ctx.has_input(slot):
        raise ShapeMismatch(
            f"required input {slot!r} is not available",
            ctx.op_type, slots=(slot,), runtime=ctx.is_runtime)


def check_same_rank(ctx: ShapeContext, a: Shape, b: Shape, slot_a: str, slot_b: str):
    if len(a) != len(b):
        raise ShapeMismatch(
            f"Input({slot_a}) rank and Input({slot_b}) rank should be same, "
            f"but received {slot_a} rank({len(a)}) != {slot_b} rank({len(b)})",
            ctx.op_type, slots=(slot_a, slot_b), values=(len(a), len(b)), runtime=ctx.is_runtime)


def check_same_dims(ctx: ShapeContext, a: Shape, b: Shape, slot_a: str, slot_b: str):
    """Rank must agree; each dimension must agree when it can be checked."""
    check_same_rank(ctx, a, b, slot_a, slot_b)
    for i, (da, db) in enumerate(zip(a, b)):
        if ctx.is_runtime or (is_known_dim(da) and is_known_dim(db)):
            if da != db:
                raise ShapeMismatch(
                    f"Input({slot_a}) and Input({slot_b}) should have the same shape, but received "
                    f"{slot_a} dimension[{i}]({da}) != {slot_b} dimension[{i}]({db})",
                    ctx.op_type, slots=(slot_a, slot_b), dim=i, values=(da, db), runtime=ctx.is_runtime)


def check_same_dtype(ctx: ShapeContext, a: DataType, b: DataType, slot_a: str, slot_b: str):
    if a != b:
        raise ShapeMismatch(
            f"Input({slot_a}) dtype {a.value} != Input({slot_b}) dtype {b.value}",
            ctx.op_type, slots=(slot_a, slot_b), values=(a.value, b.value), runtime=ctx.is_runtime)


def infer_shapes(info: "OpInfo",
                 node: OperatorNode,
                 var_types: Mapping[VarName, TensorTy],
                 is_runtime: bool = False) -> Dict[VarName, TensorTy]:
    """
    Run the operator's inference rule.

    Args:
        info: Catalog entry of the operator type
        node: The operator instance
        var_types: Metadata of the variables visible to the operator
        is_runtime: Whether concrete shapes are bound

    Returns:
        Metadata for every output variable of ``node``
    """
    ctx = ShapeContext(node, var_types, is_runtime)
    # Every required or bound input must be resolved, whatever the rule reads
    for slot, decl in info.schema.inputs.items():
        if not decl.dispensable or node.input(slot):
            enforce_input(ctx, slot)
    info.infer_shape(ctx)
    missing = ctx.missing_outputs()
    if missing:
        raise ShapeMismatch(
            f"inference did not produce metadata for outputs {missing}",
            node.type, runtime=is_runtime)
    return ctx.results()
