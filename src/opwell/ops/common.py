"""Array helpers shared by kernels.

CPU kernels compute with numpy, CUDA kernels with torch. Kernels are written
once against the small common surface of both (``where``, ``log``,
``zeros_like``...) and pick the module from the execution context.
"""

import numpy as np
import torch

from ..dtype import DataType, DeviceKind
from ..tensor import Tensor

CPU_FLOATS = (DataType.FLOAT16, DataType.FLOAT32, DataType.FLOAT64)
CUDA_FLOATS = (DataType.FLOAT16, DataType.BFLOAT16, DataType.FLOAT32, DataType.FLOAT64)
INTEGERS = (DataType.INT32, DataType.INT64)


def array_module(ctx):
    return torch if ctx.device == DeviceKind.CUDA else np


def as_array(tensor: Tensor, ctx):
    if ctx.device == DeviceKind.CUDA:
        return tensor.as_torch()
    return tensor.as_numpy()


def cast_like(value, like):
    """Cast ``value`` to the dtype of array ``like``, keeping the array type."""
    if isinstance(like, torch.Tensor):
        return value.to(like.dtype)
    return np.asarray(value).astype(like.dtype, copy=False)


def copy_array(value):
    if isinstance(value, torch.Tensor):
        return value.clone()
    return np.array(value, copy=True)


def full(ctx, shape, value, dtype: DataType):
    if ctx.device == DeviceKind.CUDA:
        return torch.full(tuple(shape), value, dtype=dtype.to_torch(), device=ctx.torch_device)
    return np.full(tuple(shape), value, dtype=dtype.to_numpy())


def kernel_table(fn, cpu_dtypes=CPU_FLOATS, cuda_dtypes=CUDA_FLOATS):
    """Register one kernel function for several (device, dtype) pairs."""
    table = {}
    for dtype in cpu_dtypes:
        table[(DeviceKind.CPU, dtype)] = fn
    for dtype in cuda_dtypes:
        table[(DeviceKind.CUDA, dtype)] = fn
    return table
