"""Data model shared by the settings, networking, vault and backend layers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class VirtualMachineState(enum.Enum):
    OFF = 'off'
    STOPPED = 'stopped'
    STARTING = 'starting'
    RESTARTING = 'restarting'
    RUNNING = 'running'
    DELAYED_SHUTDOWN = 'delayed_shutdown'
    SUSPENDING = 'suspending'
    SUSPENDED = 'suspended'
    UNKNOWN = 'unknown'


@dataclass
class NetworkInterface:
    """A requested extra interface; ``id`` may be rewritten to its backing bridge."""

    id: str
    mac_address: str
    auto_mode: bool = False


@dataclass
class NetworkInterfaceInfo:
    """A discovered network. ``links`` lists member interfaces of a bridge."""

    id: str
    type: str
    description: str
    links: list[str] = field(default_factory=list)


@dataclass
class VMImage:
    id: str = ''
    image_path: str = ''
    original_release: str = ''
    release_date: str = ''
    aliases: list[str] = field(default_factory=list)


@dataclass
class VMImageInfo:
    id: str
    release: str
    release_title: str = ''
    aliases: list[str] = field(default_factory=list)
    image_location: str = ''
    stream_location: str = ''


@dataclass(frozen=True)
class Query:
    name: str
    release: str
    remote_name: str = ''

    def key(self) -> str:
        return f'{self.remote_name}:{self.release}'


@dataclass
class VirtualMachineDescription:
    num_cores: int
    mem_size: int
    disk_space: int
    vm_name: str
    default_mac_address: str = ''
    extra_interfaces: list[NetworkInterface] = field(default_factory=list)
    ssh_username: str = 'ubuntu'
    image: VMImage = field(default_factory=VMImage)
