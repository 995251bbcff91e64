"""LXD virtual machine factory and environment reconciliation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from loguru import logger

from ...errors import AuthenticationError, BackendError, BackendUnreachableError, ErrorKind
from ...image_vault import CurlDownloader, ImageVault
from ...models import NetworkInterfaceInfo, VirtualMachineDescription, VMImage
from ...network import SUPPORTED_NETWORK_TYPES, match_backend_networks
from ...platform import Platform
from ..base import VirtualMachineFactory, VMStatusMonitor
from .client import LXDClient
from .image_vault import LXDImageVault
from .vm import LXDVirtualMachine

log = logger

LXD_PROJECT_NAME = 'multivm'
LXD_BRIDGE_NAME = 'mvbr0'

_UNREACHABLE_HINT = (
    'Please ensure the LXD snap is installed and enabled. Also make sure\n'
    'the LXD interface is connected via `snap connect <snap-name>:lxd lxd`\n'
    'when running confined.'
)


class LXDVirtualMachineFactory(VirtualMachineFactory):
    def __init__(
        self,
        data_dir: Path,
        platform: Platform,
        client: LXDClient | None = None,
        *,
        project: str = LXD_PROJECT_NAME,
        bridge_name: str = LXD_BRIDGE_NAME,
    ):
        super().__init__(data_dir, platform)
        self.client = client or LXDClient()
        self.base_url = self.client.base_url
        self.project = project
        self.bridge_name = bridge_name

    def get_backend_directory_name(self) -> str:
        return 'lxd'

    def create_virtual_machine(
        self, desc: VirtualMachineDescription, monitor: VMStatusMonitor
    ) -> LXDVirtualMachine:
        return LXDVirtualMachine(
            desc,
            monitor,
            self.client,
            self.base_url,
            self.bridge_name,
            project=self.project,
        )

    def remove_resources_for(self, name: str) -> None:
        log.trace('No resources to remove for "{}"', name)

    def prepare_instance_image(self, image: VMImage, desc: VirtualMachineDescription) -> None:
        log.trace('No driver preparation for instance image')

    def hypervisor_health_check(self) -> None:
        try:
            reply = self.client.request('GET', self.base_url)
        except BackendUnreachableError as ex:
            raise BackendUnreachableError(f'{ex}\n\n{_UNREACHABLE_HINT}') from ex

        if (reply.get('metadata') or {}).get('auth') != 'trusted':
            log.debug('Failed to authenticate to LXD:')
            log.debug('{}: {}', self.base_url, json.dumps(reply, separators=(',', ':')))
            raise AuthenticationError('Failed to authenticate to LXD.')

        if self._absent(f'{self.base_url}/projects/{self.project}'):
            log.info('Creating LXD project {}', self.project)
            project = {
                'name': self.project,
                'description': 'Project for multivm instances',
            }
            self.client.request('POST', f'{self.base_url}/projects', project)

            # Only configured when the project is created here; a project
            # created out-of-band keeps its own default profile.
            devices = {
                'eth0': {
                    'name': 'eth0',
                    'nictype': 'bridged',
                    'parent': self.bridge_name,
                    'type': 'nic',
                }
            }
            profile = {
                'description': 'Default profile for multivm project',
                'devices': devices,
            }
            # The project's own default profile, not the global one
            self.client.request(
                'PUT',
                f'{self.base_url}/profiles/default?project={self.project}',
                profile,
            )

        if self._absent(f'{self.base_url}/networks/{self.bridge_name}'):
            log.info('Creating LXD network bridge {}', self.bridge_name)
            network = {
                'name': self.bridge_name,
                'description': 'Network bridge for multivm',
            }
            self.client.request('POST', f'{self.base_url}/networks', network)

    def _absent(self, url: str) -> bool:
        try:
            self.client.request('GET', url)
        except BackendError as ex:
            if ex.kind is ErrorKind.NOT_FOUND:
                return True
            raise
        return False

    def get_backend_version_string(self) -> str:
        reply = self.client.request('GET', self.base_url)
        env = (reply.get('metadata') or {}).get('environment') or {}
        return f'lxd-{env.get("server_version", "")}'

    def create_image_vault(
        self,
        image_hosts: Sequence,
        downloader: CurlDownloader,
        cache_dir: Path,
        data_dir: Path,
        days_to_expire: int,
    ) -> ImageVault:
        return LXDImageVault(
            image_hosts,
            self.client,
            self.base_url,
            cache_dir,
            days_to_expire,
            project=self.project,
        )

    def networks(self) -> list[NetworkInterfaceInfo]:
        reply = self.client.request('GET', f'{self.base_url}/networks?recursion=1')
        lxd_networks = [n for n in reply.get('metadata') or [] if isinstance(n, dict)]
        if not lxd_networks:
            return []
        platform_networks = self.platform.network_interfaces_info()
        return match_backend_networks(
            lxd_networks, platform_networks, SUPPORTED_NETWORK_TYPES
        )
