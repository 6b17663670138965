"""
Kernel dispatch for opwell operators.
"""

from .registry import KernelFn, KernelKey, KernelRegistry, KernelSpec

__all__ = [
    'KernelFn',
    'KernelKey',
    'KernelRegistry',
    'KernelSpec',
]
