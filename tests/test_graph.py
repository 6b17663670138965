"""Graph building and backward construction tests."""

import dataclasses

import pytest

from opwell import (
    DataType,
    GraphError,
    OpSchema,
    SchemaViolation,
    ShapeMismatch,
    TensorTy,
    default_grad_maker,
    init_catalog,
)
from opwell.graph import Graph
from opwell.ops import REGISTRATIONS


def _kldiv_graph(graph, reduction="mean", shape=(4, 10)):
    graph.create_var("X", shape, "float32")
    graph.create_var("Target", shape, "float32")
    return graph.create_operator(
        "kldiv_loss", {"reduction": reduction},
        inputs={"X": "X", "Target": "Target"}, outputs={"Loss": "Loss"})


def test_create_operator_records_output_metadata(graph):
    _kldiv_graph(graph, "none")
    assert graph.var("Loss") == TensorTy((4, 10), DataType.FLOAT32)
    _kldiv_graph(Graph(graph.catalog), "sum")


def test_scalar_loss_shape(graph):
    _kldiv_graph(graph)
    assert graph.var("Loss").shape == (1,)


def test_invalid_graphs_are_rejected(graph):
    graph.create_var("X", (4, 10), "float32")
    graph.create_var("Target", (4, 5), "float32")
    with pytest.raises(ShapeMismatch):
        graph.create_operator("kldiv_loss", {}, {"X": "X", "Target": "Target"}, {"Loss": "Loss"})
    with pytest.raises(SchemaViolation):
        graph.create_operator("kldiv_loss", {"reduction": "max"},
                              {"X": "X", "Target": "X"}, {"Loss": "Loss"})
    assert graph.ops == ()
    assert not graph.has_var("Loss")


def test_duplicate_variable(graph):
    graph.create_var("X", (1,), "float32")
    with pytest.raises(GraphError):
        graph.create_var("X", (2,), "float32")


def test_unknown_variable(graph):
    with pytest.raises(KeyError):
        graph.var("nope")


def test_nodes_are_immutable(graph):
    node = _kldiv_graph(graph)
    with pytest.raises(dataclasses.FrozenInstanceError):
        node.type = "scale"
    with pytest.raises(TypeError):
        node.attrs["reduction"] = "sum"
    with pytest.raises(TypeError):
        node.inputs["X"] = ("Y",)

    changed = node.with_attrs(reduction="sum")
    assert node.attrs["reduction"] == "mean"
    assert changed.attrs["reduction"] == "sum"


def test_replace_operator(graph):
    node = _kldiv_graph(graph)
    graph.replace_operator(0, node.with_attrs(reduction="none"))
    assert graph.ops[0].attrs["reduction"] == "none"
    assert graph.var("Loss").shape == (4, 10)

    with pytest.raises(SchemaViolation):
        graph.replace_operator(0, node.with_attrs(reduction="bad"))
    assert graph.ops[0].attrs["reduction"] == "none"


def test_append_backward_kldiv(graph):
    _kldiv_graph(graph)
    grads = graph.append_backward("Loss")
    assert grads == {"Loss": "Loss@GRAD", "X": "X@GRAD"}

    types = [node.type for node in graph.ops]
    assert types == ["kldiv_loss", "fill_any_like", "kldiv_loss_grad"]
    seed = graph.ops[1]
    assert seed.attrs["value"] == 1.0
    assert graph.var("X@GRAD") == graph.var("X")
    assert graph.no_need_buffer_vars(2) == frozenset({"Target"})
    assert graph.no_need_buffer_vars(0) == frozenset()


def test_append_backward_respects_no_grad_set(graph):
    _kldiv_graph(graph)
    grads = graph.append_backward("Loss", no_grad_set={"X"})
    assert "X" not in grads
    assert not graph.has_var("X@GRAD")


def test_append_backward_unknown_loss(graph):
    with pytest.raises(GraphError):
        graph.append_backward("Loss")


def test_gradients_from_several_consumers_are_summed(graph):
    graph.create_var("X", (2, 3), "float32")
    graph.create_var("Target", (2, 3), "float32")
    graph.create_operator("scale", {"scale": 2.0}, {"X": "X"}, {"Out": "A"})
    graph.create_operator("scale", {"scale": 3.0}, {"X": "X"}, {"Out": "B"})
    graph.create_operator("sum", {}, {"X": ["A", "B"]}, {"Out": "S"})
    graph.create_operator("kldiv_loss", {"reduction": "sum"},
                          {"X": "S", "Target": "Target"}, {"Loss": "Loss"})

    grads = graph.append_backward("Loss")
    assert grads["X"] == "X@GRAD"
    assert grads["S"] == "S@GRAD"

    scale_grads = [n for n in graph.ops if n.type == "scale_grad"]
    assert sorted(n.output("X@GRAD")[0] for n in scale_grads) == [
        "X@GRAD@RENAME@0", "X@GRAD@RENAME@1",
    ]
    final = graph.ops[-1]
    assert final.type == "sum"
    assert final.input("X") == ("X@GRAD@RENAME@0", "X@GRAD@RENAME@1")
    assert final.output("Out") == ("X@GRAD",)
    assert graph.var("X@GRAD") == TensorTy((2, 3), "float32")


def test_unrelated_operators_are_skipped(graph):
    _kldiv_graph(graph)
    graph.create_operator("scale", {}, {"X": "X"}, {"Out": "unused"})
    n_before = len(graph.ops)
    graph.append_backward("Loss")
    added = [n.type for n in graph.ops[n_before:]]
    assert "scale_grad" not in added


def _register_split(catalog):
    schema = OpSchema("split2")
    schema.add_input("X")
    schema.add_output("A")
    schema.add_output("B")

    grad_schema = OpSchema("split2_grad")
    grad_schema.add_input("A@GRAD")
    grad_schema.add_input("B@GRAD")
    grad_schema.add_output("X@GRAD", dispensable=True)

    def infer(ctx):
        ctx.share_meta("X", "A")
        ctx.share_meta("X", "B")

    def infer_grad(ctx):
        ctx.share_meta("A@GRAD", "X@GRAD")

    catalog.register("split2", schema, infer, grad_maker=default_grad_maker(forward_inputs=()))
    catalog.register("split2_grad", grad_schema, infer_grad)


def test_outputs_not_reaching_loss_get_zero_gradient():
    graph = Graph(init_catalog(REGISTRATIONS + [_register_split]))
    graph.create_var("X", (3,), "float32")
    graph.create_var("Target", (3,), "float32")
    graph.create_operator("split2", {}, {"X": "X"}, {"A": "a", "B": "b"})
    graph.create_operator("kldiv_loss", {}, {"X": "a", "Target": "Target"}, {"Loss": "Loss"})

    grads = graph.append_backward("Loss")

    zero = [n for n in graph.ops if n.type == "fill_any_like" and n.attrs["value"] == 0.0]
    assert len(zero) == 1
    assert zero[0].input("X") == ("b",)
    split_grad = graph.ops[-1]
    assert split_grad.type == "split2_grad"
    assert split_grad.input("B@GRAD") == ("b@GRAD",)
    assert grads["X"] == "X@GRAD"


def test_repr(graph):
    _kldiv_graph(graph)
    assert "kldiv_loss" in repr(graph)


def test_operator_cannot_overwrite_a_variable(graph):
    graph.create_var("x", (3,), "float32")
    with pytest.raises(GraphError):
        graph.create_operator("fill_any_like", {"dtype": "int64"}, {"X": "x"}, {"Out": "x"})
    assert graph.var("x") == TensorTy((3,), "float32")

    graph.create_operator("scale", {}, {"X": "x"}, {"Out": "y"})
    with pytest.raises(GraphError):
        graph.create_operator("scale", {"scale": 2.0}, {"X": "x"}, {"Out": "y"})
    assert len(graph.ops) == 1


def test_output_cannot_be_an_input(graph):
    graph.create_var("a", (2,), "float32")
    graph.create_var("b", (2,), "float32")
    with pytest.raises(GraphError):
        graph.create_operator("sum", {}, {"X": ["a", "b"]}, {"Out": "a"})


def test_gradient_requested_twice(graph):
    node = _kldiv_graph(graph)
    graph.create_var("Loss@GRAD", (1,), "float32")
    graph.request_gradient(node, {"Loss": "Loss@GRAD"})
    with pytest.raises(GraphError):
        graph.request_gradient(node, {"Loss": "Loss@GRAD"})
    assert [n.type for n in graph.ops] == ["kldiv_loss", "kldiv_loss_grad"]


def test_output_bound_twice():
    graph = Graph(init_catalog(REGISTRATIONS + [_register_split]))
    graph.create_var("X", (3,), "float32")
    with pytest.raises(GraphError):
        graph.create_operator("split2", {}, {"X": "X"}, {"A": "a", "B": "a"})
    assert not graph.has_var("a")
