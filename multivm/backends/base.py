"""Abstract backend contracts: VM handles, status monitors, and VM factories."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from ..image_vault import CurlDownloader, ImageVault
from ..models import (
    NetworkInterface,
    NetworkInterfaceInfo,
    VirtualMachineDescription,
    VirtualMachineState,
    VMImage,
)
from ..network import infer_bridged_interfaces
from ..platform import Platform
from ..util import ensure_dir


@runtime_checkable
class VMStatusMonitor(Protocol):
    """Sink that VM handles report lifecycle transitions to."""

    def persist_state_for(self, name: str, state: VirtualMachineState) -> None:
        ...


class VirtualMachine(ABC):
    """Live handle on one backend instance.

    The caller owns the handle and must call the factory's
    ``remove_resources_for`` after deleting the instance.
    """

    def __init__(self, name: str, monitor: VMStatusMonitor):
        self.vm_name = name
        self.monitor = monitor
        self.state = VirtualMachineState.UNKNOWN

    @abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def shutdown(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def suspend(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def current_state(self) -> VirtualMachineState:
        raise NotImplementedError

    @abstractmethod
    def management_ipv4(self) -> str:
        raise NotImplementedError

    def update_state(self) -> None:
        self.monitor.persist_state_for(self.vm_name, self.state)


class VirtualMachineFactory(ABC):
    """Capability set every backend driver implements.

    Callers hold only this type. ``prepare_networking`` is shared; the
    bridge synthesis step defaults to the host platform.
    """

    def __init__(self, data_dir: Path, platform: Platform):
        self.platform = platform
        self.data_dir = ensure_dir(Path(data_dir) / self.get_backend_directory_name())

    @abstractmethod
    def create_virtual_machine(
        self, desc: VirtualMachineDescription, monitor: VMStatusMonitor
    ) -> VirtualMachine:
        raise NotImplementedError

    @abstractmethod
    def remove_resources_for(self, name: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def prepare_instance_image(self, image: VMImage, desc: VirtualMachineDescription) -> None:
        raise NotImplementedError

    @abstractmethod
    def hypervisor_health_check(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_backend_version_string(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def create_image_vault(
        self,
        image_hosts: Sequence,
        downloader: CurlDownloader,
        cache_dir: Path,
        data_dir: Path,
        days_to_expire: int,
    ) -> ImageVault:
        raise NotImplementedError

    @abstractmethod
    def networks(self) -> list[NetworkInterfaceInfo]:
        raise NotImplementedError

    @abstractmethod
    def get_backend_directory_name(self) -> str:
        raise NotImplementedError

    def create_bridge_with(self, interface: str) -> str:
        return self.platform.create_bridge_with(interface)

    def prepare_networking(self, extra_interfaces: list[NetworkInterface]) -> None:
        if not extra_interfaces:
            return
        infer_bridged_interfaces(
            extra_interfaces, self.networks(), self.create_bridge_with
        )
