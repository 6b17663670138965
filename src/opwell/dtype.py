"""Data types and device kinds understood by the dispatch table."""

from enum import Enum

import numpy as np
import torch


class DataType(Enum):
    """Element types a kernel can be registered for."""
    FLOAT16 = "float16"
    BFLOAT16 = "bfloat16"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    INT32 = "int32"
    INT64 = "int64"
    BOOL = "bool"

    @property
    def bits(self) -> int:
        """Number of bits per element."""
        mapping = {
            DataType.FLOAT16: 16,
            DataType.BFLOAT16: 16,
            DataType.FLOAT32: 32,
            DataType.FLOAT64: 64,
            DataType.INT32: 32,
            DataType.INT64: 64,
            DataType.BOOL: 8,
        }
        return mapping[self]

    @property
    def is_floating(self) -> bool:
        return self in (DataType.FLOAT16, DataType.BFLOAT16,
                        DataType.FLOAT32, DataType.FLOAT64)

    def to_numpy(self) -> np.dtype:
        if self == DataType.BFLOAT16:
            raise TypeError("numpy has no bfloat16 dtype")
        return np.dtype(self.value)

    def to_torch(self) -> torch.dtype:
        return _TO_TORCH[self]

    @classmethod
    def from_numpy(cls, dtype) -> "DataType":
        name = np.dtype(dtype).name
        try:
            return cls(name)
        except ValueError:
            raise TypeError(f"Unsupported numpy dtype: {name}") from None

    @classmethod
    def from_torch(cls, dtype: torch.dtype) -> "DataType":
        for member, tdt in _TO_TORCH.items():
            if tdt == dtype:
                return member
        raise TypeError(f"Unsupported torch dtype: {dtype}")

    @classmethod
    def parse(cls, value) -> "DataType":
        """Accept a DataType, its value name, or a numpy/torch dtype."""
        if isinstance(value, cls):
            return value
        if isinstance(value, torch.dtype):
            return cls.from_torch(value)
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                raise TypeError(f"Unknown data type: {value!r}") from None
        return cls.from_numpy(value)


_TO_TORCH = {
    DataType.FLOAT16: torch.float16,
    DataType.BFLOAT16: torch.bfloat16,
    DataType.FLOAT32: torch.float32,
    DataType.FLOAT64: torch.float64,
    DataType.INT32: torch.int32,
    DataType.INT64: torch.int64,
    DataType.BOOL: torch.bool,
}


class DeviceKind(Enum):
    """Device families kernels are registered for."""
    CPU = "cpu"
    CUDA = "cuda"

    @classmethod
    def parse(cls, value) -> "DeviceKind":
        if isinstance(value, cls):
            return value
        if isinstance(value, torch.device):
            value = value.type
        name = str(value).lower()
        if name == "gpu":
            name = "cuda"
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown device kind: {value!r}") from None
