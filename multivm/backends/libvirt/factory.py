"""Native QEMU/KVM factory driven through libvirt command-line tools."""

from __future__ import annotations

import re
import shutil
import tempfile
from pathlib import Path
from typing import Sequence

from loguru import logger

from ...config import DEFAULT_LIBVIRT_URI, NetworkConfig
from ...errors import BackendError, BackendUnreachableError
from ...host import check_commands, install_hint
from ...image_vault import CurlDownloader, DefaultImageVault, ImageVault
from ...models import NetworkInterfaceInfo, VirtualMachineDescription, VMImage
from ...network import SUPPORTED_NETWORK_TYPES
from ...platform import Platform
from ...util import CmdError, ensure_dir, run_cmd
from ..base import VirtualMachineFactory, VMStatusMonitor
from .vm import LibvirtVirtualMachine, resize_disk, virsh_cmd

log = logger

_UNREACHABLE_HINT = (
    'Please ensure libvirt is installed and the libvirtd service is running.\n'
    'Also make sure your user may manage system domains (e.g. is in the\n'
    '`libvirt` group) and that passwordless sudo is available.'
)
_VERSION_RE = re.compile(r'Running hypervisor:\s*(\S+)\s+(\S+)')


def network_xml(net: NetworkConfig) -> str:
    prefix = net.subnet_cidr.rsplit('/', 1)[-1] if '/' in net.subnet_cidr else '24'
    return f"""<network>
  <name>{net.name}</name>
  <forward mode='nat'/>
  <bridge name='{net.bridge}' stp='on' delay='0'/>
  <ip address='{net.gateway_ip}' prefix='{prefix}'>
    <dhcp>
      <range start='{net.dhcp_start}' end='{net.dhcp_end}'/>
    </dhcp>
  </ip>
</network>
"""


class LibvirtVirtualMachineFactory(VirtualMachineFactory):
    def __init__(
        self,
        data_dir: Path,
        platform: Platform,
        *,
        uri: str = DEFAULT_LIBVIRT_URI,
        network: NetworkConfig | None = None,
    ):
        super().__init__(data_dir, platform)
        self.uri = uri
        self.network = network or NetworkConfig()

    def get_backend_directory_name(self) -> str:
        return 'libvirt'

    def _virsh(self, *args: str, check: bool = True):
        return run_cmd(virsh_cmd(self.uri, *args), sudo=True, check=check, capture=True)

    def instance_dir(self, name: str) -> Path:
        return self.data_dir / 'instances' / name

    def instance_disk(self, name: str) -> Path:
        return self.instance_dir(name) / f'{name}.qcow2'

    def create_virtual_machine(
        self, desc: VirtualMachineDescription, monitor: VMStatusMonitor
    ) -> LibvirtVirtualMachine:
        return LibvirtVirtualMachine(
            desc,
            monitor,
            uri=self.uri,
            disk_path=self.instance_disk(desc.vm_name),
            network_name=self.network.name,
        )

    def remove_resources_for(self, name: str) -> None:
        dpath = self.instance_dir(name)
        if not dpath.exists():
            log.trace('No resources to remove for "{}"', name)
            return
        log.info('Removing instance directory {}', dpath)
        shutil.rmtree(dpath)

    def prepare_instance_image(self, image: VMImage, desc: VirtualMachineDescription) -> None:
        """Copy the vault image into a standalone instance disk.

        The instance disk has no backing file, so pruning or refreshing the
        vault never touches existing instances.
        """
        disk = self.instance_disk(desc.vm_name)
        if disk.exists():
            log.info('Instance disk exists: {}', disk)
            return
        ensure_dir(disk.parent)
        run_cmd(
            ['qemu-img', 'convert', '-O', 'qcow2', str(image.image_path), str(disk)],
            check=True,
            capture=True,
        )
        resize_disk(disk, desc.disk_space)
        log.info('Prepared instance disk {} ({} bytes)', disk, desc.disk_space)

    def hypervisor_health_check(self) -> None:
        missing = check_commands()
        if missing:
            raise BackendUnreachableError(
                f'Missing required commands: {", ".join(missing)}\n\n{install_hint()}'
            )
        res = self._virsh('uri', check=False)
        if res.code != 0:
            raise BackendUnreachableError(
                f'Cannot connect to {self.uri}: {res.stderr.strip()}\n\n{_UNREACHABLE_HINT}'
            )

        name = self.network.name
        info = self._virsh('net-info', name, check=False)
        if info.code != 0:
            if 'network not found' not in (info.stderr or '').lower():
                raise BackendError(
                    f'Failed to query network {name}: {info.stderr.strip()}'
                )
            self._define_network()
        elif re.search(r'^Active:\s+no', info.stdout, flags=re.MULTILINE):
            log.info('Starting inactive network {}', name)
            self._virsh('net-start', name)

    def _define_network(self) -> None:
        name = self.network.name
        log.info('Defining network {} (bridge={})', name, self.network.bridge)
        with tempfile.NamedTemporaryFile('w', suffix='.xml', delete=False) as f:
            f.write(network_xml(self.network))
            tmp = f.name
        try:
            self._virsh('net-define', tmp)
        finally:
            Path(tmp).unlink(missing_ok=True)
        self._virsh('net-autostart', name)
        self._virsh('net-start', name)
        log.info('Network ready: {}', name)

    def get_backend_version_string(self) -> str:
        try:
            res = self._virsh('version')
        except CmdError as ex:
            raise BackendUnreachableError(f'{ex}\n\n{_UNREACHABLE_HINT}') from ex
        match = _VERSION_RE.search(res.stdout)
        if match is None:
            return 'qemu-unknown'
        return f'{match.group(1).lower()}-{match.group(2)}'

    def create_image_vault(
        self,
        image_hosts: Sequence,
        downloader: CurlDownloader,
        cache_dir: Path,
        data_dir: Path,
        days_to_expire: int,
    ) -> ImageVault:
        return DefaultImageVault(image_hosts, downloader, cache_dir, data_dir, days_to_expire)

    def networks(self) -> list[NetworkInterfaceInfo]:
        platform_networks = self.platform.network_interfaces_info()
        return [
            info
            for _, info in sorted(platform_networks.items())
            if info.type in SUPPORTED_NETWORK_TYPES
        ]
