"""Tensor and scope collaborators used at execution time.

A ``Tensor`` is a named holder around a numpy array (CPU) or a torch tensor
(CPU or CUDA). The core only reads its metadata; kernels read and write the
data.
"""

from typing import Any, Dict, Iterator, Mapping, Optional

import numpy as np
import torch

from .dtype import DataType, DeviceKind
from .ir import Shape, TensorTy


class Tensor:
    """Holder for one variable's data."""

    def __init__(self, data: Any = None):
        self._data = None
        if data is not None:
            self.set(data)

    @property
    def is_initialized(self) -> bool:
        return self._data is not None

    @property
    def data(self):
        return self._data

    def set(self, data: Any) -> "Tensor":
        """Bind new data; lists and scalars become numpy arrays."""
        if not isinstance(data, (np.ndarray, torch.Tensor)):
            data = np.asarray(data)
        self._data = data
        return self

    def _require(self):
        if self._data is None:
            raise ValueError("Tensor is not initialized")
        return self._data

    @property
    def shape(self) -> Shape:
        return tuple(int(d) for d in self._require().shape)

    @property
    def dtype(self) -> DataType:
        data = self._require()
        if isinstance(data, torch.Tensor):
            return DataType.from_torch(data.dtype)
        return DataType.from_numpy(data.dtype)

    @property
    def device(self) -> DeviceKind:
        data = self._require()
        if isinstance(data, torch.Tensor):
            return DeviceKind.parse(data.device)
        return DeviceKind.CPU

    @property
    def meta(self) -> TensorTy:
        return TensorTy(self.shape, self.dtype)

    def as_numpy(self) -> np.ndarray:
        data = self._require()
        if isinstance(data, torch.Tensor):
            return data.detach().cpu().numpy()
        return data

    def as_torch(self) -> torch.Tensor:
        data = self._require()
        if isinstance(data, torch.Tensor):
            return data
        return torch.from_numpy(data)

    def __repr__(self) -> str:
        if self._data is None:
            return "Tensor(<uninitialized>)"
        return f"Tensor(shape={list(self.shape)}, dtype={self.dtype.value}, device={self.device.value})"


class Scope:
    """Mapping from variable name to bound tensor for one execution."""

    def __init__(self, tensors: Optional[Mapping[str, Any]] = None):
        self._vars: Dict[str, Tensor] = {}
        for name, value in (tensors or {}).items():
            self.feed(name, value)

    def feed(self, name: str, value: Any) -> Tensor:
        tensor = value if isinstance(value, Tensor) else Tensor(value)
        self._vars[name] = tensor
        return tensor

    def fetch(self, name: str):
        """Return the data bound to ``name``."""
        return self[name].data

    def find(self, name: str) -> Optional[Tensor]:
        return self._vars.get(name)

    def __getitem__(self, name: str) -> Tensor:
        try:
            return self._vars[name]
        except KeyError:
            raise KeyError(f"Variable {name!r} is not in scope") from None

    def __setitem__(self, name: str, tensor: Tensor):
        self._vars[name] = tensor

    def __contains__(self, name: str) -> bool:
        return name in self._vars

    def __iter__(self) -> Iterator[str]:
        return iter(self._vars)

    def __len__(self) -> int:
        return len(self._vars)
