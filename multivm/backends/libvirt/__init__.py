"""Native QEMU/KVM backend driven through libvirt tooling."""

from __future__ import annotations

from .factory import LibvirtVirtualMachineFactory
from .vm import LibvirtVirtualMachine

__all__ = ['LibvirtVirtualMachine', 'LibvirtVirtualMachineFactory']
