"""Scale operator: Out = scale * X + bias, or scale * (X + bias)."""

from ..catalog import OperatorCatalog
from ..grad import default_grad_maker, grad_var_name
from ..schema import AttrType, OpSchema
from ..shape import ShapeContext
from .common import CPU_FLOATS, CUDA_FLOATS, INTEGERS, array_module, as_array, cast_like, kernel_table

OUT_GRAD = grad_var_name("Out")
X_GRAD = grad_var_name("X")


def _forward_schema() -> OpSchema:
    schema = OpSchema("scale")
    schema.add_input("X", "Input tensor.")
    schema.add_output("Out", "Output tensor with the shape of Input(X).")
    schema.add_attr("scale", AttrType.FLOAT, "Multiplier.", default=1.0)
    schema.add_attr("bias", AttrType.FLOAT, "Offset.", default=0.0)
    schema.add_attr("bias_after_scale", AttrType.BOOL,
                    "Add the bias after scaling (true) or before (false).", default=True)
    return schema


def _grad_schema() -> OpSchema:
    schema = OpSchema("scale_grad")
    schema.add_input(OUT_GRAD, "Gradient of Out.", differentiable=False)
    schema.add_output(X_GRAD, "Gradient of X.", dispensable=True, differentiable=False)
    schema.add_attr("scale", AttrType.FLOAT, default=1.0)
    schema.add_attr("bias", AttrType.FLOAT, default=0.0)
    schema.add_attr("bias_after_scale", AttrType.BOOL, default=True)
    return schema


def infer_shape(ctx: ShapeContext):
    ctx.share_meta("X", "Out")


def infer_grad_shape(ctx: ShapeContext):
    if ctx.has_output(X_GRAD):
        ctx.share_meta(OUT_GRAD, X_GRAD)


def scale_kernel(inputs, outputs, attrs, ctx):
    x = as_array(inputs["X"], ctx)
    if attrs["bias_after_scale"]:
        out = x * attrs["scale"] + attrs["bias"]
    else:
        out = (x + attrs["bias"]) * attrs["scale"]
    outputs["Out"].set(cast_like(out, x))


def scale_grad_kernel(inputs, outputs, attrs, ctx):
    if X_GRAD in outputs:
        dout = as_array(inputs[OUT_GRAD], ctx)
        outputs[X_GRAD].set(cast_like(dout * attrs["scale"], dout))


def register(catalog: OperatorCatalog):
    catalog.register(
        "scale",
        _forward_schema(),
        infer_shape,
        grad_maker=default_grad_maker(forward_inputs=()),
        kernels=kernel_table(scale_kernel, CPU_FLOATS + INTEGERS, CUDA_FLOATS + INTEGERS),
    )
    catalog.register(
        "scale_grad",
        _grad_schema(),
        infer_grad_shape,
        kernels=kernel_table(scale_grad_kernel),
    )
