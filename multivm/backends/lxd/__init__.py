"""LXD backend: factory, VM handle, image vault, and REST transport."""

from __future__ import annotations

from .client import LXDClient
from .factory import LXD_BRIDGE_NAME, LXD_PROJECT_NAME, LXDVirtualMachineFactory
from .image_vault import LXDImageVault
from .vm import LXDVirtualMachine

__all__ = [
    'LXDClient',
    'LXDImageVault',
    'LXDVirtualMachine',
    'LXDVirtualMachineFactory',
    'LXD_BRIDGE_NAME',
    'LXD_PROJECT_NAME',
]
