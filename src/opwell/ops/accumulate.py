"""Element-wise sum of a list of tensors. Used to accumulate gradients."""

from ..catalog import OperatorCatalog
from ..grad import default_grad_maker, grad_var_name
from ..schema import OpSchema
from ..shape import ShapeContext, check_same_dims, check_same_dtype
from .common import CPU_FLOATS, CUDA_FLOATS, INTEGERS, as_array, cast_like, copy_array, kernel_table

OUT_GRAD = grad_var_name("Out")
X_GRAD = grad_var_name("X")


def _forward_schema() -> OpSchema:
    schema = OpSchema("sum")
    schema.add_input("X", "Tensors of the same shape and dtype.", duplicable=True)
    schema.add_output("Out", "Sum of the inputs.")
    return schema


def _grad_schema() -> OpSchema:
    schema = OpSchema("sum_grad")
    schema.add_input(OUT_GRAD, "Gradient of Out.", differentiable=False)
    schema.add_output(X_GRAD, "Gradient of every input.", duplicable=True, dispensable=True,
                      differentiable=False)
    return schema


def infer_shape(ctx: ShapeContext):
    dims = ctx.input_dims("X")
    dtypes = ctx.input_dtypes("X")
    for i in range(1, len(dims)):
        check_same_dims(ctx, dims[0], dims[i], "X[0]", f"X[{i}]")
        check_same_dtype(ctx, dtypes[0], dtypes[i], "X[0]", f"X[{i}]")
    ctx.share_meta("X", "Out")


def infer_grad_shape(ctx: ShapeContext):
    if ctx.has_output(X_GRAD):
        ctx.share_meta(OUT_GRAD, X_GRAD)


def sum_kernel(inputs, outputs, attrs, ctx):
    arrays = [as_array(t, ctx) for t in inputs["X"]]
    total = copy_array(arrays[0])
    for a in arrays[1:]:
        total = total + a
    outputs["Out"].set(cast_like(total, arrays[0]))


def sum_grad_kernel(inputs, outputs, attrs, ctx):
    dout = as_array(inputs[OUT_GRAD], ctx)
    for tensor in outputs.get(X_GRAD, ()):
        if tensor is not None:
            tensor.set(copy_array(dout))


def register(catalog: OperatorCatalog):
    catalog.register(
        "sum",
        _forward_schema(),
        infer_shape,
        grad_maker=default_grad_maker(forward_inputs=()),
        kernels=kernel_table(sum_kernel, CPU_FLOATS + INTEGERS, CUDA_FLOATS + INTEGERS),
    )
    catalog.register(
        "sum_grad",
        _grad_schema(),
        infer_grad_shape,
        kernels=kernel_table(sum_grad_kernel),
    )
