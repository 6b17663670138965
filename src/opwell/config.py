"""Runtime configuration."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .dtype import DeviceKind
from .probe import probe

_TRUE = ("1", "true", "yes", "on")


@dataclass
class RuntimeConfig:
    """Execution settings shared by the engine and ``run_operator``."""
    default_device: str = "auto"  # auto, cpu or cuda
    check_nan_inf: bool = False  # fail when a kernel writes NaN/Inf
    verify_kernel_outputs: bool = True  # compare kernel outputs with inferred metadata

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RuntimeConfig":
        """Read ``OPWELL_DEFAULT_DEVICE``, ``OPWELL_CHECK_NAN_INF`` and ``OPWELL_VERIFY_KERNEL_OUTPUTS``."""
        env = os.environ if environ is None else environ
        config = cls()
        if "OPWELL_DEFAULT_DEVICE" in env:
            config.default_device = env["OPWELL_DEFAULT_DEVICE"].strip().lower()
        if "OPWELL_CHECK_NAN_INF" in env:
            config.check_nan_inf = env["OPWELL_CHECK_NAN_INF"].strip().lower() in _TRUE
        if "OPWELL_VERIFY_KERNEL_OUTPUTS" in env:
            config.verify_kernel_outputs = env["OPWELL_VERIFY_KERNEL_OUTPUTS"].strip().lower() in _TRUE
        return config

    def resolve_device(self) -> DeviceKind:
        """Turn ``default_device`` into a device kind; "auto" picks CUDA when present."""
        if self.default_device == "auto":
            return DeviceKind.CUDA if probe().has_cuda else DeviceKind.CPU
        return DeviceKind.parse(self.default_device)
