"""Kullback-Leibler divergence loss.

    l(x, y) = y * (log(y) - x)

X is the log-probability and Target the probability. Elements where
Target <= 0 contribute zero.
"""

import math

from ..catalog import OperatorCatalog
from ..dtype import DataType
from ..errors import SchemaViolation
from ..grad import GradOpBuilder, grad_var_name
from ..schema import AttrType, OpSchema
from ..shape import ShapeContext, check_same_dims, check_same_dtype, enforce_input
from .common import array_module, as_array, cast_like, kernel_table

REDUCTIONS = ("none", "batchmean", "mean", "sum")
KERNEL_DTYPES = (DataType.FLOAT32, DataType.FLOAT64)

LOSS_GRAD = grad_var_name("Loss")
X_GRAD = grad_var_name("X")


def _forward_schema() -> OpSchema:
    schema = OpSchema("kldiv_loss", comment=__doc__)
    schema.add_input(
        "X",
        "Input tensor of shape [N, *], where N is the batch size and * any "
        "number of additional dimensions. float32 or float64.")
    schema.add_input(
        "Target",
        "Tensor with the shape of Input(X) and the same data type.",
        differentiable=False)
    schema.add_output(
        "Loss",
        "Output loss. Same shape as Input(X) when reduction is 'none', "
        "otherwise of shape [1].")
    schema.add_attr(
        "reduction", AttrType.ENUM,
        "'none' for no reduction, 'batchmean' for the sum divided by batch "
        "size, 'mean' for the average of all elements, 'sum' for their sum.",
        default="mean", choices=REDUCTIONS)
    return schema


def _grad_schema() -> OpSchema:
    schema = OpSchema("kldiv_loss_grad")
    schema.add_input("X", "Forward Input(X); only its shape is read.", differentiable=False)
    schema.add_input("Target", "Forward Input(Target).", differentiable=False)
    schema.add_input(LOSS_GRAD, "Gradient of the forward Loss.", differentiable=False)
    schema.add_output(X_GRAD, "Gradient of Input(X).", dispensable=True, differentiable=False)
    schema.add_attr("reduction", AttrType.ENUM, default="mean", choices=REDUCTIONS)
    return schema


def infer_shape(ctx: ShapeContext):
    dim_x = ctx.input_dim("X")
    dim_target = ctx.input_dim("Target")
    check_same_dims(ctx, dim_x, dim_target, "X", "Target")
    check_same_dtype(ctx, ctx.input_dtype("X"), ctx.input_dtype("Target"), "X", "Target")

    reduction = ctx.attr("reduction")
    if reduction not in REDUCTIONS:
        raise SchemaViolation(
            "Attr(reduction) can only be 'none'|'batchmean'|'sum'|'mean'",
            ctx.op_type, name="reduction", value=reduction)

    if reduction == "none":
        ctx.set_output("Loss", dim_x, ctx.input_dtype("X"))
    else:
        ctx.set_output("Loss", (1,), ctx.input_dtype("X"))


def infer_grad_shape(ctx: ShapeContext):
    enforce_input(ctx, "X")
    enforce_input(ctx, "Target")
    enforce_input(ctx, LOSS_GRAD)
    if ctx.attr("reduction") == "none":
        check_same_dims(ctx, ctx.input_dim("X"), ctx.input_dim(LOSS_GRAD), "X", LOSS_GRAD)
    if ctx.has_output(X_GRAD):
        ctx.set_output(X_GRAD, ctx.input_dim("X"), ctx.input_dtype("X"))


def make_grad(g: GradOpBuilder):
    g.op(
        "kldiv_loss_grad",
        inputs={
            "X": g.input("X"),
            "Target": g.input("Target"),
            LOSS_GRAD: g.output_grad("Loss"),
        },
        outputs={X_GRAD: g.input_grad("X")},
    )


def kldiv_loss_kernel(inputs, outputs, attrs, ctx):
    xp = array_module(ctx)
    x = as_array(inputs["X"], ctx)
    target = as_array(inputs["Target"], ctx)
    positive = target > 0
    safe_target = xp.where(positive, target, xp.ones_like(target))
    loss = xp.where(positive, target * (xp.log(safe_target) - x), xp.zeros_like(x))

    reduction = attrs["reduction"]
    if reduction == "none":
        out = loss
    elif reduction == "mean":
        out = loss.mean().reshape(1)
    elif reduction == "sum":
        out = loss.sum().reshape(1)
    elif reduction == "batchmean":
        out = (loss.sum() / x.shape[0]).reshape(1)
    else:
        raise ValueError(f"unsupported reduction {reduction!r}")
    outputs["Loss"].set(cast_like(out, x))


def kldiv_loss_grad_kernel(inputs, outputs, attrs, ctx):
    if X_GRAD not in outputs:
        return
    xp = array_module(ctx)
    target = as_array(inputs["Target"], ctx)
    loss_grad = as_array(inputs[LOSS_GRAD], ctx)
    shape = inputs["X"].shape

    # Elements with Target <= 0 are constant zero in the forward pass
    dx = -target * loss_grad
    dx = xp.where(target > 0, dx, xp.zeros_like(dx))
    reduction = attrs["reduction"]
    if reduction == "mean":
        dx = dx / math.prod(shape)
    elif reduction == "batchmean":
        dx = dx / shape[0]
    elif reduction not in ("none", "sum"):
        raise ValueError(f"unsupported reduction {reduction!r}")
    outputs[X_GRAD].set(cast_like(dx, loss_grad))


def register(catalog: OperatorCatalog):
    catalog.register(
        "kldiv_loss",
        _forward_schema(),
        infer_shape,
        grad_maker=make_grad,
        kernels=kernel_table(kldiv_loss_kernel, KERNEL_DTYPES, KERNEL_DTYPES),
        kernel_dtype_slot="X",
    )
    catalog.register(
        "kldiv_loss_grad",
        _grad_schema(),
        infer_grad_shape,
        kernels=kernel_table(kldiv_loss_grad_kernel, KERNEL_DTYPES, KERNEL_DTYPES),
        no_need_buffer=("Target",),
        kernel_dtype_slot=LOSS_GRAD,
    )
