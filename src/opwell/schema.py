"""Declared inputs, outputs and attributes of an operator type."""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import SchemaFrozen, SchemaViolation
from .ir import AttrV


class AttrType(Enum):
    """Attribute value types."""
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ENUM = "enum"  # string restricted to a choice set
    LIST = "list"  # homogeneous list of one of the above


class _Required:
    def __repr__(self):
        return "<required>"


REQUIRED = _Required()


@dataclass(frozen=True)
class InputDecl:
    name: str
    description: str = ""
    duplicable: bool = False
    dispensable: bool = False
    differentiable: bool = True


@dataclass(frozen=True)
class OutputDecl:
    name: str
    description: str = ""
    duplicable: bool = False
    dispensable: bool = False
    differentiable: bool = True


@dataclass(frozen=True)
class AttrDecl:
    name: str
    type: AttrType
    description: str = ""
    default: Any = REQUIRED
    choices: Optional[Tuple[str, ...]] = None  # ENUM, or LIST of ENUM
    elem_type: Optional[AttrType] = None  # LIST only

    @property
    def required(self) -> bool:
        return self.default is REQUIRED


Decl = Union[InputDecl, OutputDecl, AttrDecl]


def _check_scalar(attr_type: AttrType, value: Any, choices: Optional[Tuple[str, ...]]) -> Tuple[bool, Any]:
    """Return (ok, normalized value) for one scalar attribute value."""
    if attr_type == AttrType.STRING:
        return isinstance(value, str), value
    if attr_type == AttrType.ENUM:
        return isinstance(value, str) and value in (choices or ()), value
    if attr_type == AttrType.BOOL:
        return isinstance(value, bool), value
    if attr_type == AttrType.INT:
        return isinstance(value, int) and not isinstance(value, bool), value
    if attr_type == AttrType.FLOAT:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return True, float(value)
        return False, value
    return False, value


class OpSchema:
    """
    Schema of one operator type.

    Operator modules build a schema with ``add_input``/``add_output``/
    ``add_attr`` (or ``declare`` with a prepared declaration). The catalog
    freezes the schema when the operator is registered.
    """

    def __init__(self, op_type: str, comment: str = ""):
        self.op_type = op_type
        self.comment = comment
        self._inputs: Dict[str, InputDecl] = {}
        self._outputs: Dict[str, OutputDecl] = {}
        self._attrs: Dict[str, AttrDecl] = {}
        self._frozen = False

    # Declaration

    def declare(self, decl: Decl) -> Decl:
        """
        Register one input, output or attribute declaration.

        Args:
            decl: The declaration to add

        Returns:
            The declaration, for chaining
        """
        if self._frozen:
            raise SchemaFrozen(f"cannot declare {decl.name!r} after registration", self.op_type)
        if decl.name in self._inputs or decl.name in self._outputs or decl.name in self._attrs:
            raise SchemaViolation(f"{decl.name!r} is declared twice", self.op_type, name=decl.name)

        if isinstance(decl, AttrDecl):
            self._check_attr_decl(decl)
            self._attrs[decl.name] = decl
        elif isinstance(decl, InputDecl):
            self._inputs[decl.name] = decl
        elif isinstance(decl, OutputDecl):
            self._outputs[decl.name] = decl
        else:
            raise TypeError(f"Unsupported declaration: {decl!r}")
        return decl

    def add_input(self, name: str, description: str = "", **kwargs) -> InputDecl:
        return self.declare(InputDecl(name, description, **kwargs))

    def add_output(self, name: str, description: str = "", **kwargs) -> OutputDecl:
        return self.declare(OutputDecl(name, description, **kwargs))

    def add_attr(self,
                 name: str,
                 attr_type: AttrType,
                 description: str = "",
                 default: Any = REQUIRED,
                 choices: Optional[Sequence[str]] = None,
                 elem_type: Optional[AttrType] = None) -> AttrDecl:
        return self.declare(AttrDecl(
            name=name,
            type=attr_type,
            description=description,
            default=default,
            choices=tuple(choices) if choices is not None else None,
            elem_type=elem_type,
        ))

    def _check_attr_decl(self, decl: AttrDecl):
        if decl.type == AttrType.LIST:
            if decl.elem_type is None or decl.elem_type == AttrType.LIST:
                raise SchemaViolation("list attribute needs a scalar elem_type", self.op_type, name=decl.name)
        elif decl.elem_type is not None:
            raise SchemaViolation("elem_type is only valid for list attributes", self.op_type, name=decl.name)
        needs_choices = decl.type == AttrType.ENUM or decl.elem_type == AttrType.ENUM
        if needs_choices and not decl.choices:
            raise SchemaViolation("enum attribute needs a choice set", self.op_type, name=decl.name)
        if not decl.required:
            # Defaults must satisfy their own declaration
            self._check_value(decl, decl.default)

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Introspection

    @property
    def inputs(self) -> Mapping[str, InputDecl]:
        return MappingProxyType(self._inputs)

    @property
    def outputs(self) -> Mapping[str, OutputDecl]:
        return MappingProxyType(self._outputs)

    @property
    def attrs(self) -> Mapping[str, AttrDecl]:
        return MappingProxyType(self._attrs)

    def differentiable_inputs(self) -> List[str]:
        return [d.name for d in self._inputs.values() if d.differentiable]

    def differentiable_outputs(self) -> List[str]:
        return [d.name for d in self._outputs.values() if d.differentiable]

    # Validation

    def _check_value(self, decl: AttrDecl, value: Any) -> AttrV:
        if decl.type == AttrType.LIST:
            if not isinstance(value, (list, tuple)):
                raise SchemaViolation(
                    f"attribute {decl.name!r} expects a list of {decl.elem_type.value}, got {type(value).__name__}",
                    self.op_type, name=decl.name, value=value)
            items = []
            for item in value:
                ok, item = _check_scalar(decl.elem_type, item, decl.choices)
                if not ok:
                    raise SchemaViolation(
                        f"attribute {decl.name!r} has an invalid element {item!r} "
                        f"(expected {decl.elem_type.value})",
                        self.op_type, name=decl.name, value=value)
                items.append(item)
            return tuple(items)

        ok, value = _check_scalar(decl.type, value, decl.choices)
        if not ok:
            if decl.type == AttrType.ENUM:
                msg = f"attribute {decl.name!r} must be one of {list(decl.choices)}, got {value!r}"
            else:
                msg = f"attribute {decl.name!r} expects {decl.type.value}, got {value!r}"
            raise SchemaViolation(msg, self.op_type, name=decl.name, value=value)
        return value

    def validate(self, attrs: Optional[Mapping[str, Any]] = None) -> Mapping[str, AttrV]:
        """
        Validate an attribute map against the declarations.

        Args:
            attrs: Attribute values supplied by the caller

        Returns:
            Read-only attribute map with defaults filled in
        """
        attrs = dict(attrs or {})
        unknown = [name for name in attrs if name not in self._attrs]
        if unknown:
            raise SchemaViolation(f"undeclared attributes {unknown}", self.op_type, name=unknown[0])

        result: Dict[str, AttrV] = {}
        for name, decl in self._attrs.items():
            if name in attrs:
                result[name] = self._check_value(decl, attrs[name])
            elif decl.required:
                raise SchemaViolation(f"required attribute {name!r} is missing", self.op_type, name=name)
            else:
                result[name] = self._check_value(decl, decl.default)
        return MappingProxyType(result)

    def validate_bindings(self,
                          inputs: Mapping[str, Sequence[str]],
                          outputs: Mapping[str, Sequence[str]]):
        """Check slot bindings against the declared inputs and outputs."""
        for kind, bindings, decls in (("input", inputs, self._inputs), ("output", outputs, self._outputs)):
            for slot, names in bindings.items():
                if slot not in decls:
                    raise SchemaViolation(f"undeclared {kind} slot {slot!r}", self.op_type, name=slot)
                if not decls[slot].duplicable and len(names) > 1:
                    raise SchemaViolation(
                        f"{kind} slot {slot!r} is not duplicable but binds {list(names)}",
                        self.op_type, name=slot, value=tuple(names))
            for slot, decl in decls.items():
                if not decl.dispensable and not bindings.get(slot):
                    raise SchemaViolation(f"{kind} slot {slot!r} is not bound", self.op_type, name=slot)

    def __repr__(self) -> str:
        return (f"OpSchema({self.op_type}, inputs={list(self._inputs)}, "
                f"outputs={list(self._outputs)}, attrs={list(self._attrs)})")
