"""
Built-in operators.

Each module exposes ``register(catalog)``. ``REGISTRATIONS`` is the list
``init_catalog`` runs at startup; the order does not matter.
"""

from . import accumulate, fill, kldiv_loss, scale

REGISTRATIONS = [
    kldiv_loss.register,
    scale.register,
    accumulate.register,
    fill.register,
]

__all__ = ['REGISTRATIONS']
