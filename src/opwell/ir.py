from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Sequence, Tuple, Union

from .dtype import DataType

VarName = str
Shape = Tuple[int, ...]
AttrV = Union[int, float, str, bool, Tuple[Union[int, float, str, bool], ...]]

# Any dimension <= 0 is treated as unknown until runtime by static checks.
UNKNOWN_DIM = -1
# Placeholder keeping positions in a duplicable slot when one entry needs no gradient
EMPTY_VAR_NAME = "@EMPTY@"


def is_known_dim(d: int) -> bool:
    return d > 0


def _freeze_bindings(bindings: Mapping[str, Union[str, Iterable[str]]]) -> Mapping[str, Tuple[VarName, ...]]:
    frozen: Dict[str, Tuple[VarName, ...]] = {}
    for slot, names in bindings.items():
        if isinstance(names, str):
            names = (names,)
        frozen[slot] = tuple(names)
    return MappingProxyType(frozen)


@dataclass(frozen=True)
class TensorTy:
    shape: Shape
    dtype: DataType

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))
        object.__setattr__(self, "dtype", DataType.parse(self.dtype))

    @property
    def rank(self) -> int:
        return len(self.shape)


@dataclass(frozen=True)
class OperatorNode:
    """One operator instance in a graph.

    Slot bindings map a slot name to the variable names bound to it. Nodes
    never change in place; the ``with_*`` helpers return new instances.
    """
    type: str
    inputs: Mapping[str, Tuple[VarName, ...]] = field(default_factory=dict)
    outputs: Mapping[str, Tuple[VarName, ...]] = field(default_factory=dict)
    attrs: Mapping[str, AttrV] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "inputs", _freeze_bindings(self.inputs))
        object.__setattr__(self, "outputs", _freeze_bindings(self.outputs))
        object.__setattr__(self, "attrs", MappingProxyType(dict(self.attrs)))

    def input(self, slot: str) -> Tuple[VarName, ...]:
        return self.inputs.get(slot, ())

    def output(self, slot: str) -> Tuple[VarName, ...]:
        return self.outputs.get(slot, ())

    def input_names(self) -> Tuple[VarName, ...]:
        return tuple(n for names in self.inputs.values() for n in names)

    def output_names(self) -> Tuple[VarName, ...]:
        return tuple(n for names in self.outputs.values() for n in names)

    def with_attrs(self, **attrs) -> "OperatorNode":
        merged = dict(self.attrs)
        merged.update(attrs)
        return replace(self, attrs=merged)

    def with_inputs(self, inputs: Mapping[str, Sequence[VarName]]) -> "OperatorNode":
        return replace(self, inputs=inputs)

    def with_outputs(self, outputs: Mapping[str, Sequence[VarName]]) -> "OperatorNode":
        return replace(self, outputs=outputs)

    def rename_output(self, old: VarName, new: VarName) -> "OperatorNode":
        """Rename the first binding of ``old`` among the outputs."""
        outputs = {}
        done = False
        for slot, names in self.outputs.items():
            renamed = []
            for n in names:
                if n == old and not done:
                    renamed.append(new)
                    done = True
                else:
                    renamed.append(n)
            outputs[slot] = renamed
        if not done:
            raise KeyError(f"{old!r} is not an output of {self.type}")
        return self.with_outputs(outputs)

    def __repr__(self) -> str:
        ins = {k: list(v) for k, v in self.inputs.items()}
        outs = {k: list(v) for k, v in self.outputs.items()}
        return f"OperatorNode({self.type}, inputs={ins}, outputs={outs}, attrs={dict(self.attrs)})"


@dataclass(frozen=True)
class GradientSpec:
    nodes: Tuple[OperatorNode, ...]
    no_need_buffer: FrozenSet[VarName] = frozenset()
    input_grads: Mapping[VarName, VarName] = field(default_factory=dict)  # forward var -> grad var

    def __post_init__(self):
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "no_need_buffer", frozenset(self.no_need_buffer))
        object.__setattr__(self, "input_grads", MappingProxyType(dict(self.input_grads)))
