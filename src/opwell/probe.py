"""Device probing used to resolve the default execution device."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import torch

from .dtype import DeviceKind


@dataclass
class DeviceInfo:
    """Information about one execution device."""
    kind: DeviceKind
    index: int
    name: str
    memory_gb: float = 0.0
    compute_capability: Optional[tuple] = None


@dataclass
class HardwareConfig:
    """Devices visible to this process."""
    devices: List[DeviceInfo] = field(default_factory=list)

    @property
    def has_cuda(self) -> bool:
        return any(d.kind == DeviceKind.CUDA for d in self.devices)

    @property
    def device_kinds(self) -> List[DeviceKind]:
        kinds = []
        for d in self.devices:
            if d.kind not in kinds:
                kinds.append(d.kind)
        return kinds

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            'devices': [
                {
                    'kind': d.kind.value,
                    'index': d.index,
                    'name': d.name,
                    'memory_gb': d.memory_gb,
                    'compute_capability': list(d.compute_capability) if d.compute_capability else None,
                }
                for d in self.devices
            ],
        }


def _detect_cuda_devices() -> List[DeviceInfo]:
    if not torch.cuda.is_available():
        return []
    devices = []
    for i in range(torch.cuda.device_count()):
        props = torch.cuda.get_device_properties(i)
        devices.append(DeviceInfo(
            kind=DeviceKind.CUDA,
            index=i,
            name=props.name,
            memory_gb=props.total_memory / 1e9,
            compute_capability=(props.major, props.minor),
        ))
    return devices


def probe() -> HardwareConfig:
    """
    Detect the devices kernels can be dispatched to.

    Returns:
        HardwareConfig; the CPU is always present
    """
    devices = [DeviceInfo(kind=DeviceKind.CPU, index=0, name="cpu")]
    devices.extend(_detect_cuda_devices())
    return HardwareConfig(devices=devices)
