"""fill_any_like: a tensor shaped like X filled with a constant."""

from ..catalog import OperatorCatalog
from ..dtype import DataType
from ..schema import AttrType, OpSchema
from ..shape import ShapeContext
from .common import full, kernel_table

SAME_DTYPE = "same"
DTYPE_CHOICES = (SAME_DTYPE,) + tuple(d.value for d in DataType)

CPU_DTYPES = tuple(d for d in DataType if d != DataType.BFLOAT16)
CUDA_DTYPES = tuple(DataType)


def _schema() -> OpSchema:
    schema = OpSchema("fill_any_like")
    schema.add_input("X", "Only the shape and dtype are read.", differentiable=False)
    schema.add_output("Out", "Filled tensor.", differentiable=False)
    schema.add_attr("value", AttrType.FLOAT, "Fill value.", default=0.0)
    schema.add_attr("dtype", AttrType.ENUM, "Output dtype, 'same' keeps the dtype of X.",
                    default=SAME_DTYPE, choices=DTYPE_CHOICES)
    return schema


def _out_dtype(attrs, x_dtype: DataType) -> DataType:
    if attrs["dtype"] == SAME_DTYPE:
        return x_dtype
    return DataType.parse(attrs["dtype"])


def infer_shape(ctx: ShapeContext):
    ctx.set_output("Out", ctx.input_dim("X"), _out_dtype(ctx.node.attrs, ctx.input_dtype("X")))


def fill_any_like_kernel(inputs, outputs, attrs, ctx):
    x = inputs["X"]
    outputs["Out"].set(full(ctx, x.shape, attrs["value"], _out_dtype(attrs, x.dtype)))


def register(catalog: OperatorCatalog):
    catalog.register(
        "fill_any_like",
        _schema(),
        infer_shape,
        kernels=kernel_table(fill_any_like_kernel, CPU_DTYPES, CUDA_DTYPES),
        no_need_buffer=("X",),
    )
