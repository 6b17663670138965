"""Graph-building API: variables, operator nodes and backward construction."""

import logging
from collections import Counter
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from .catalog import OperatorCatalog, get_catalog
from .errors import GraphError
from .grad import build_gradient, grad_var_name
from .ir import EMPTY_VAR_NAME, GradientSpec, OperatorNode, TensorTy, VarName

logger = logging.getLogger(__name__)


class Graph:
    """
    A computation graph: variable metadata plus an ordered list of operator nodes.

    Every node is validated against its schema and run through static shape
    inference when it is added; the metadata of its outputs is recorded so
    later nodes can be inferred in turn.
    Outputs must be new variables: a node never rebinds a declared or
    previously written variable, nor one of its own inputs.
    """

    def __init__(self, catalog: Optional[OperatorCatalog] = None):
        self.catalog = catalog if catalog is not None else get_catalog()
        self._vars: Dict[VarName, TensorTy] = {}
        self._ops: List[OperatorNode] = []
        self._no_need_buffer: Dict[int, FrozenSet[VarName]] = {}

    # Variables

    def create_var(self, name: VarName, shape: Sequence[int], dtype) -> TensorTy:
        if name in self._vars:
            raise GraphError(f"variable {name!r} already exists")
        ty = TensorTy(tuple(shape), dtype)
        self._vars[name] = ty
        return ty

    def var(self, name: VarName) -> TensorTy:
        try:
            return self._vars[name]
        except KeyError:
            raise KeyError(f"Variable {name!r} is not defined in the graph") from None

    def has_var(self, name: VarName) -> bool:
        return name in self._vars

    @property
    def vars(self) -> Mapping[VarName, TensorTy]:
        return MappingProxyType(self._vars)

    @property
    def ops(self) -> Tuple[OperatorNode, ...]:
        return tuple(self._ops)

    def no_need_buffer_vars(self, index: int) -> FrozenSet[VarName]:
        """Inputs of the node at ``index`` whose contents need not be kept."""
        return self._no_need_buffer.get(index, frozenset())

    # Operators

    def _check_outputs(self, node: OperatorNode, rebindable: Iterable[VarName] = ()):
        """Outputs must be fresh variables, each written once and never read by the same node."""
        rebindable = set(rebindable)
        inputs = set(node.input_names())
        seen = set()
        for name in node.output_names():
            if name == EMPTY_VAR_NAME:
                continue
            if name in seen:
                raise GraphError(f"output {name!r} is bound more than once", node.type)
            if name in inputs:
                raise GraphError(f"output {name!r} is also an input of the operator", node.type)
            if name in self._vars and name not in rebindable:
                raise GraphError(f"variable {name!r} is already defined", node.type)
            seen.add(name)

    def _append(self, node: OperatorNode, no_need_buffer: Iterable[VarName] = ()) -> OperatorNode:
        self._check_outputs(node)
        inferred = self.catalog.infer_shapes(node, self._vars)
        self._vars.update(inferred)
        self._ops.append(node)
        hints = frozenset(no_need_buffer) & frozenset(node.input_names())
        if hints:
            self._no_need_buffer[len(self._ops) - 1] = hints
        return node

    def create_operator(self,
                        op_type: str,
                        attributes: Optional[Mapping[str, Any]] = None,
                        inputs: Optional[Mapping[str, Any]] = None,
                        outputs: Optional[Mapping[str, Any]] = None) -> OperatorNode:
        """
        Create an operator node and append it to the graph.

        Args:
            op_type: Registered operator type
            attributes: Attribute values
            inputs: Input slot -> variable name(s)
            outputs: Output slot -> variable name(s)

        Returns:
            The appended node
        """
        node = self.catalog.create_operator(op_type, attributes, inputs, outputs)
        return self._append(node)

    def replace_operator(self, index: int, node: OperatorNode) -> OperatorNode:
        """Swap the node at ``index`` for a rewritten one; it is validated and inferred again."""
        node = self.catalog.create_operator(node.type, node.attrs, node.inputs, node.outputs)
        self._check_outputs(node, rebindable=self._ops[index].output_names())
        inferred = self.catalog.infer_shapes(node, self._vars)
        self._vars.update(inferred)
        self._ops[index] = node
        self._no_need_buffer.pop(index, None)
        return node

    def request_gradient(self,
                         node: OperatorNode,
                         output_grad_names: Mapping[VarName, VarName],
                         no_grad_set: Iterable[VarName] = ()) -> GradientSpec:
        """
        Build the backward nodes of ``node`` and append them.

        Args:
            node: Forward node
            output_grad_names: Forward output variable -> gradient variable
            no_grad_set: Forward inputs that should not receive gradients

        Returns:
            The GradientSpec that was appended
        """
        spec = build_gradient(self.catalog, node, output_grad_names, no_grad_set)
        for grad_node in spec.nodes:
            self._append(grad_node, spec.no_need_buffer)
        return spec

    def append_backward(self,
                        loss: VarName,
                        no_grad_set: Iterable[VarName] = ()) -> Dict[VarName, VarName]:
        """
        Append the backward pass of every operator that contributes to ``loss``.

        Gradients reaching a variable through several consumers are written
        to ``<var>@GRAD@RENAME@<k>`` and accumulated with a ``sum`` node.
        Differentiable outputs that do not reach the loss get a zero gradient.

        Args:
            loss: Variable to differentiate
            no_grad_set: Variables that must not receive gradients

        Returns:
            Variable -> its final gradient variable
        """
        if loss not in self._vars:
            raise GraphError(f"loss variable {loss!r} is not defined")
        no_grad = set(no_grad_set)

        # Operators whose outputs lead to the loss, in reverse order
        needed = {loss}
        relevant: List[OperatorNode] = []
        for node in reversed(self._ops):
            if any(o in needed for o in node.output_names()):
                relevant.append(node)
                needed.update(node.input_names())

        uses = Counter(
            v for node in relevant if self.catalog.lookup(node.type).has_gradient
            for v in node.input_names()
        )
        renames = Counter()
        pending: Dict[VarName, List[VarName]] = {}
        final: Dict[VarName, VarName] = {}

        def resolve(var: VarName) -> Optional[VarName]:
            grads = pending.pop(var, None)
            if not grads:
                return final.get(var)
            if len(grads) == 1:
                name = grads[0]
            else:
                name = grad_var_name(var)
                self.create_operator("sum", {}, {"X": grads}, {"Out": name})
            final[var] = name
            return name

        seed = grad_var_name(loss)
        self.create_operator("fill_any_like", {"value": 1.0}, {"X": loss}, {"Out": seed})
        pending[loss] = [seed]

        for node in relevant:
            info = self.catalog.lookup(node.type)
            if not info.has_gradient:
                continue
            out_grads = {}
            for o in node.output_names():
                g = resolve(o)
                if g is not None:
                    out_grads[o] = g
            if not out_grads:
                continue
            for slot in info.schema.differentiable_outputs():
                for o in node.output(slot):
                    if o not in out_grads:
                        zero = grad_var_name(o)
                        self.create_operator("fill_any_like", {"value": 0.0}, {"X": o}, {"Out": zero})
                        out_grads[o] = zero

            spec = build_gradient(self.catalog, node, out_grads, no_grad)
            grad_to_var = {g: v for v, g in spec.input_grads.items()}
            for grad_node in spec.nodes:
                outputs = {}
                for slot, names in grad_node.outputs.items():
                    renamed = []
                    for n in names:
                        v = grad_to_var.get(n)
                        if v is not None:
                            if uses[v] > 1:
                                n = f"{n}@RENAME@{renames[v]}"
                                renames[v] += 1
                            pending.setdefault(v, []).append(n)
                        renamed.append(n)
                    outputs[slot] = renamed
                self._append(grad_node.with_outputs(outputs), spec.no_need_buffer)

        for var in list(pending):
            resolve(var)
        logger.debug("Backward of %r produced gradients for %d variables", loss, len(final))
        return final

    def __repr__(self) -> str:
        lines = [f"Graph({len(self._vars)} vars, {len(self._ops)} ops)"]
        for i, node in enumerate(self._ops):
            lines.append(f"  {i}: {node!r}")
        return "\n".join(lines)
