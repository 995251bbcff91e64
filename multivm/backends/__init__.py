"""Backend drivers and driver selection."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict

from ..config import MultiVMConfig
from ..errors import MultiVMError
from ..platform import Platform
from .base import VirtualMachine, VirtualMachineFactory, VMStatusMonitor


def _make_lxd(cfg: MultiVMConfig, platform: Platform) -> VirtualMachineFactory:
    from .lxd import LXDClient, LXDVirtualMachineFactory

    client = LXDClient(
        cfg.backend.lxd_url,
        socket_path=cfg.backend.lxd_socket,
        timeout=cfg.backend.timeout_s,
    )
    return LXDVirtualMachineFactory(Path(cfg.paths.data_dir), platform, client)


def _make_libvirt(cfg: MultiVMConfig, platform: Platform) -> VirtualMachineFactory:
    from .libvirt import LibvirtVirtualMachineFactory

    return LibvirtVirtualMachineFactory(
        Path(cfg.paths.data_dir),
        platform,
        uri=cfg.backend.libvirt_uri,
        network=cfg.network,
    )


# Map of supported drivers
_BACKENDS: Dict[str, Callable[[MultiVMConfig, Platform], VirtualMachineFactory]] = {
    'lxd': _make_lxd,
    'libvirt': _make_libvirt,
}


def make_factory(cfg: MultiVMConfig, platform: Platform | None = None) -> VirtualMachineFactory:
    """Return the factory for the configured driver."""
    key = (cfg.backend.driver or '').strip().lower()
    make = _BACKENDS.get(key)
    if make is None:
        raise MultiVMError(f"Unsupported backend driver '{cfg.backend.driver}'")
    cfg = cfg.expanded_paths()
    return make(cfg, platform or Platform())


__all__ = [
    'VMStatusMonitor',
    'VirtualMachine',
    'VirtualMachineFactory',
    'make_factory',
]
