import pytest

from opwell import DataType, SchemaViolation, ShapeMismatch, TensorTy, UNKNOWN_DIM


def _kldiv(catalog, reduction="mean"):
    return catalog.create_operator(
        "kldiv_loss", {"reduction": reduction},
        {"X": "X", "Target": "Target"}, {"Loss": "Loss"})


def _types(x_shape, t_shape, dtype="float32", t_dtype=None):
    return {
        "X": TensorTy(x_shape, dtype),
        "Target": TensorTy(t_shape, t_dtype or dtype),
    }


def test_kldiv_no_reduction_keeps_shape(catalog):
    out = catalog.infer_shapes(_kldiv(catalog, "none"), _types((4, 10), (4, 10)))
    assert out == {"Loss": TensorTy((4, 10), DataType.FLOAT32)}


@pytest.mark.parametrize("reduction", ["mean", "sum", "batchmean"])
def test_kldiv_reduction_gives_scalar(catalog, reduction):
    out = catalog.infer_shapes(_kldiv(catalog, reduction), _types((4, 10), (4, 10)))
    assert out["Loss"].shape == (1,)


def test_kldiv_invalid_reduction_rejected_at_construction(catalog):
    with pytest.raises(SchemaViolation) as exc:
        _kldiv(catalog, "invalid_value")
    assert exc.value.name == "reduction"


def test_kldiv_dimension_mismatch_reports_index(catalog):
    with pytest.raises(ShapeMismatch) as exc:
        catalog.infer_shapes(_kldiv(catalog), _types((4, 10), (4, 5)))
    err = exc.value
    assert err.dim == 1
    assert err.values == (10, 5)
    assert err.runtime is False
    assert err.op_type == "kldiv_loss"


def test_kldiv_rank_mismatch(catalog):
    with pytest.raises(ShapeMismatch) as exc:
        catalog.infer_shapes(_kldiv(catalog), _types((4, 10), (4, 10, 1)))
    assert exc.value.dim is None
    assert exc.value.values == (2, 3)


def test_rank_is_checked_even_with_unknown_dims(catalog):
    with pytest.raises(ShapeMismatch):
        catalog.infer_shapes(_kldiv(catalog), _types((UNKNOWN_DIM, 10), (UNKNOWN_DIM,)))


def test_unknown_dims_pass_static_check(catalog):
    out = catalog.infer_shapes(_kldiv(catalog, "none"), _types((UNKNOWN_DIM, 10), (4, 10)))
    assert out["Loss"].shape == (UNKNOWN_DIM, 10)


def test_unknown_dims_are_checked_at_runtime(catalog):
    with pytest.raises(ShapeMismatch) as exc:
        catalog.infer_shapes(_kldiv(catalog), _types((UNKNOWN_DIM, 10), (4, 10)), is_runtime=True)
    assert exc.value.runtime is True
    assert exc.value.dim == 0


def test_runtime_accepts_matching_shapes(catalog):
    out = catalog.infer_shapes(_kldiv(catalog, "none"), _types((3, 2), (3, 2)), is_runtime=True)
    assert out["Loss"].shape == (3, 2)


def test_missing_input_in_context(catalog):
    types = {"X": TensorTy((4, 10), "float32")}
    with pytest.raises(ShapeMismatch) as exc:
        catalog.infer_shapes(_kldiv(catalog), types)
    assert exc.value.slots == ("Target",)


def test_dtype_mismatch(catalog):
    with pytest.raises(ShapeMismatch):
        catalog.infer_shapes(_kldiv(catalog), _types((4, 10), (4, 10), "float32", "float64"))


def test_grad_shape(catalog):
    node = catalog.create_operator(
        "kldiv_loss_grad", {"reduction": "mean"},
        {"X": "X", "Target": "Target", "Loss@GRAD": "Loss@GRAD"}, {"X@GRAD": "X@GRAD"})
    types = _types((4, 10), (4, 10))
    types["Loss@GRAD"] = TensorTy((1,), "float32")
    assert catalog.infer_shapes(node, types) == {"X@GRAD": TensorTy((4, 10), "float32")}


def test_sum_checks_every_input(catalog):
    node = catalog.create_operator("sum", {}, {"X": ["a", "b", "c"]}, {"Out": "o"})
    types = {n: TensorTy((2, 3), "float32") for n in "ab"}
    types["c"] = TensorTy((2, 4), "float32")
    with pytest.raises(ShapeMismatch) as exc:
        catalog.infer_shapes(node, types)
    assert exc.value.slots == ("X[0]", "X[2]")


def test_fill_any_like_dtype_attribute(catalog):
    node = catalog.create_operator(
        "fill_any_like", {"value": 0.0, "dtype": "int64"}, {"X": "x"}, {"Out": "o"})
    out = catalog.infer_shapes(node, {"x": TensorTy((5,), "float32")})
    assert out["o"] == TensorTy((5,), DataType.INT64)


def test_rule_that_forgets_an_output(empty_catalog):
    from opwell import OpSchema

    schema = OpSchema("lazy")
    schema.add_input("X")
    schema.add_output("Out")
    empty_catalog.register("lazy", schema, lambda ctx: None)
    node = empty_catalog.create_operator("lazy", {}, {"X": "x"}, {"Out": "o"})
    with pytest.raises(ShapeMismatch):
        empty_catalog.infer_shapes(node, {"x": TensorTy((1,), "float32")})


def _register_mul(catalog):
    from opwell import OpSchema

    schema = OpSchema("mul")
    schema.add_input("X")
    schema.add_input("Y")
    schema.add_input("Bias", dispensable=True)
    schema.add_output("Out")
    # The rule only reads X
    catalog.register("mul", schema, lambda ctx: ctx.share_meta("X", "Out"))


def test_required_inputs_are_checked_even_if_the_rule_ignores_them(empty_catalog):
    _register_mul(empty_catalog)
    node = empty_catalog.create_operator("mul", {}, {"X": "x", "Y": "y"}, {"Out": "o"})
    with pytest.raises(ShapeMismatch) as exc:
        empty_catalog.infer_shapes(node, {"x": TensorTy((2,), "float64")})
    assert exc.value.slots == ("Y",)

    types = {"x": TensorTy((2,), "float64"), "y": TensorTy((2,), "float64")}
    assert empty_catalog.infer_shapes(node, types) == {"o": TensorTy((2,), "float64")}


def test_bound_dispensable_input_must_be_available(empty_catalog):
    _register_mul(empty_catalog)
    node = empty_catalog.create_operator(
        "mul", {}, {"X": "x", "Y": "y", "Bias": "b"}, {"Out": "o"})
    types = {"x": TensorTy((2,), "float64"), "y": TensorTy((2,), "float64")}
    with pytest.raises(ShapeMismatch) as exc:
        empty_catalog.infer_shapes(node, types)
    assert exc.value.slots == ("Bias",)


def test_graph_rejects_undefined_input(empty_catalog):
    from opwell import Graph

    _register_mul(empty_catalog)
    graph = Graph(empty_catalog)
    graph.create_var("x", (2,), "float64")
    with pytest.raises(ShapeMismatch):
        graph.create_operator("mul", {}, {"X": "x", "Y": "y"}, {"Out": "o"})
    assert graph.ops == ()
