"""Construction of backward operator nodes from forward nodes."""

import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

from .errors import GraphError, IncompleteGradientRequest
from .ir import EMPTY_VAR_NAME, AttrV, GradientSpec, OperatorNode, VarName

if TYPE_CHECKING:
    from .catalog import OperatorCatalog

logger = logging.getLogger(__name__)

GRAD_SUFFIX = "@GRAD"


def grad_var_name(name: str) -> str:
    return name + GRAD_SUFFIX


class GradOpBuilder:
    """Helper handed to gradient makers to read the forward node and emit backward nodes."""

    def __init__(self,
                 catalog: "OperatorCatalog",
                 node: OperatorNode,
                 output_grad_names: Mapping[VarName, VarName],
                 no_grad_set: Iterable[VarName] = ()):
        self.catalog = catalog
        self.forward = node
        self.schema = catalog.lookup(node.type).schema
        self.output_grad_names = dict(output_grad_names)
        self.no_grad_set = set(no_grad_set)
        self.nodes: List[OperatorNode] = []
        self._requested: Dict[VarName, VarName] = {}

    @property
    def type(self) -> str:
        return self.forward.type

    def input(self, slot: str) -> Tuple[VarName, ...]:
        return self.forward.input(slot)

    def output(self, slot: str) -> Tuple[VarName, ...]:
        return self.forward.output(slot)

    def output_grad(self, slot: str) -> Tuple[VarName, ...]:
        """Gradient variables supplied by the caller for a forward output slot."""
        return tuple(self.output_grad_names[v] for v in self.forward.output(slot) if v in self.output_grad_names)

    def input_grad(self, slot: str) -> Tuple[VarName, ...]:
        """Fresh gradient variables for a forward input slot; empty when no gradient is needed."""
        decl = self.schema.inputs.get(slot)
        if decl is None or not decl.differentiable:
            return ()
        names = []
        for v in self.forward.input(slot):
            if v in self.no_grad_set:
                names.append(EMPTY_VAR_NAME)
            else:
                g = grad_var_name(v)
                self._requested[v] = g
                names.append(g)
        if all(n == EMPTY_VAR_NAME for n in names):
            return ()
        return tuple(names)

    def attrs(self) -> Dict[str, AttrV]:
        return dict(self.forward.attrs)

    def op(self,
           op_type: str,
           inputs: Mapping[str, Sequence[VarName]],
           outputs: Mapping[str, Sequence[VarName]],
           attrs: Optional[Mapping[str, AttrV]] = None) -> OperatorNode:
        """Create and record one backward node. Empty slots are dropped."""
        node = self.catalog.create_operator(
            op_type,
            attrs if attrs is not None else self.attrs(),
            {k: v for k, v in inputs.items() if v},
            {k: v for k, v in outputs.items() if v},
        )
        self.nodes.append(node)
        return node

    def produced_grads(self) -> Dict[VarName, VarName]:
        produced = {n for node in self.nodes for n in node.output_names()}
        return {v: g for v, g in self._requested.items() if g in produced}


GradientMaker = Callable[[GradOpBuilder], None]


def default_grad_maker(forward_inputs: Optional[Sequence[str]] = None,
                       forward_outputs: Sequence[str] = (),
                       grad_type: Optional[str] = None) -> GradientMaker:
    """
    Build a gradient maker following the usual wiring.

    The backward node is ``<op>_grad``. It reads the listed forward inputs
    (all of them by default) and forward outputs under their own slot names,
    the output gradients under ``<slot>@GRAD``, and writes input gradients
    under ``<slot>@GRAD`` for differentiable inputs only. Attributes are
    copied verbatim.
    """
    def maker(g: GradOpBuilder):
        schema = g.schema
        in_slots = list(schema.inputs) if forward_inputs is None else list(forward_inputs)
        inputs = {slot: g.input(slot) for slot in in_slots}
        for slot in forward_outputs:
            inputs[slot] = g.output(slot)
        for slot in schema.differentiable_outputs():
            inputs[grad_var_name(slot)] = g.output_grad(slot)
        outputs = {grad_var_name(slot): g.input_grad(slot) for slot in schema.inputs}
        g.op(grad_type or f"{g.type}_grad", inputs, outputs)

    return maker


def build_gradient(catalog: "OperatorCatalog",
                   node: OperatorNode,
                   output_grad_names: Mapping[VarName, VarName],
                   no_grad_set: Iterable[VarName] = ()) -> GradientSpec:
    """
    Construct the backward nodes of a forward node.

    Args:
        catalog: Catalog holding the forward and backward operator types
        node: Forward operator node
        output_grad_names: Forward output variable -> its gradient variable
        no_grad_set: Forward input variables that must not receive a gradient

    Returns:
        GradientSpec with the backward nodes, no-need-buffer variables and
        the forward variable -> gradient variable mapping
    """
    info = catalog.lookup(node.type)
    if info.grad_maker is None:
        raise GraphError("operator has no gradient maker", node.type)

    missing = tuple(
        v
        for slot in info.schema.differentiable_outputs()
        for v in node.output(slot)
        if v not in output_grad_names
    )
    if missing:
        raise IncompleteGradientRequest(node.type, missing)

    builder = GradOpBuilder(catalog, node, output_grad_names, no_grad_set)
    info.grad_maker(builder)

    no_need_buffer = set()
    for grad_node in builder.nodes:
        grad_info = catalog.lookup(grad_node.type)
        for slot in grad_info.no_need_buffer:
            no_need_buffer.update(grad_node.input(slot))

    spec = GradientSpec(
        nodes=tuple(builder.nodes),
        no_need_buffer=frozenset(no_need_buffer),
        input_grads=builder.produced_grads(),
    )
    logger.debug("Built %d backward node(s) for %s", len(spec.nodes), node.type)
    return spec
