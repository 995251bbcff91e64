"""libvirt/QEMU-backed virtual machine handle driven through virsh."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from ...errors import BackendError
from ...models import VirtualMachineDescription, VirtualMachineState
from ...util import run_cmd
from ..base import VirtualMachine, VMStatusMonitor

log = logger

_DOMSTATE_MAP = {
    'running': VirtualMachineState.RUNNING,
    'idle': VirtualMachineState.RUNNING,
    'paused': VirtualMachineState.SUSPENDED,
    'pmsuspended': VirtualMachineState.SUSPENDED,
    'in shutdown': VirtualMachineState.DELAYED_SHUTDOWN,
    'shut off': VirtualMachineState.STOPPED,
    'crashed': VirtualMachineState.STOPPED,
}


def virsh_cmd(uri: str, *args: str) -> list[str]:
    return ['virsh', '-c', uri, *args]


def disk_virtual_size(disk: Path) -> int:
    res = run_cmd(['qemu-img', 'info', '--output=json', str(disk)], check=True, capture=True)
    return int(json.loads(res.stdout)['virtual-size'])


def resize_disk(disk: Path, size: int) -> None:
    """Grow ``disk`` to ``size`` bytes. Disks are never shrunk."""
    current = disk_virtual_size(disk)
    if size <= current:
        if size < current:
            log.warning('Not shrinking {} from {} to {} bytes', disk, current, size)
        return
    run_cmd(['qemu-img', 'resize', str(disk), str(size)], check=True, capture=True)


class LibvirtVirtualMachine(VirtualMachine):
    def __init__(
        self,
        desc: VirtualMachineDescription,
        monitor: VMStatusMonitor,
        *,
        uri: str,
        disk_path: Path,
        network_name: str,
    ):
        super().__init__(desc.vm_name, monitor)
        self.desc = desc
        self.uri = uri
        self.disk_path = Path(disk_path)
        self.network_name = network_name
        self.current_state()
        self.update_state()

    def _virsh(self, *args: str, check: bool = True):
        return run_cmd(virsh_cmd(self.uri, *args), sudo=True, check=check, capture=True)

    def _defined(self) -> bool:
        return self._virsh('dominfo', self.vm_name, check=False).code == 0

    def install_cmd(self) -> list[str]:
        desc = self.desc
        default_net = f'network={self.network_name},model=virtio'
        if desc.default_mac_address:
            default_net += f',mac={desc.default_mac_address}'
        cmd = [
            'virt-install',
            '--connect',
            self.uri,
            '--name',
            self.vm_name,
            '--memory',
            str(desc.mem_size // 1024**2),
            '--vcpus',
            str(desc.num_cores),
            '--cpu',
            'host-passthrough',
            '--import',
            '--osinfo',
            'detect=on,require=off',
            '--disk',
            f'path={self.disk_path},format=qcow2,bus=virtio',
            '--network',
            default_net,
        ]
        for net in desc.extra_interfaces:
            cmd += ['--network', f'bridge={net.id},model=virtio,mac={net.mac_address}']
        cmd += ['--graphics', 'none', '--noautoconsole', '--rng', '/dev/urandom']
        return cmd

    def apply_resources(self) -> None:
        """Push cpus, memory and disk size from the description onto a stopped domain."""
        desc = self.desc
        mem_kib = str(desc.mem_size // 1024)
        cpus = str(desc.num_cores)
        self._virsh('setvcpus', self.vm_name, cpus, '--config', '--maximum')
        self._virsh('setvcpus', self.vm_name, cpus, '--config')
        self._virsh('setmaxmem', self.vm_name, mem_kib, '--config')
        self._virsh('setmem', self.vm_name, mem_kib, '--config')
        if self.disk_path.exists():
            resize_disk(self.disk_path, desc.disk_space)
        log.debug('Applied resources to "{}"', self.vm_name)

    def start(self) -> None:
        if not self._defined():
            log.info('Defining and starting "{}" with virt-install', self.vm_name)
            run_cmd(self.install_cmd(), sudo=True, check=True, capture=True)
        elif self.current_state() is VirtualMachineState.SUSPENDED:
            self._virsh('resume', self.vm_name)
        else:
            if self.state in (VirtualMachineState.OFF, VirtualMachineState.STOPPED):
                self.apply_resources()
            self._virsh('start', self.vm_name)
        self.state = VirtualMachineState.STARTING
        self.update_state()

    def shutdown(self) -> None:
        if self.current_state() in (VirtualMachineState.OFF, VirtualMachineState.STOPPED):
            log.debug('Ignoring shutdown since "{}" is already stopped', self.vm_name)
            return
        self._virsh('shutdown', self.vm_name)
        self.state = VirtualMachineState.DELAYED_SHUTDOWN
        self.update_state()

    def suspend(self) -> None:
        self._virsh('suspend', self.vm_name)
        self.state = VirtualMachineState.SUSPENDED
        self.update_state()

    def delete(self) -> None:
        self._virsh('destroy', self.vm_name, check=False)
        # Different libvirt states require different undefine flags.
        attempts = [
            ['undefine', self.vm_name, '--managed-save', '--snapshots-metadata', '--nvram'],
            ['undefine', self.vm_name, '--nvram'],
            ['undefine', self.vm_name],
        ]
        errs: list[str] = []
        for args in attempts:
            res = self._virsh(*args, check=False)
            if res.code != 0:
                msg = (res.stderr or res.stdout or '').strip()
                if msg:
                    errs.append(f'{args}: {msg}')
            if not self._defined():
                self.state = VirtualMachineState.OFF
                log.info('Deleted instance "{}"', self.vm_name)
                return
        detail = '\n'.join(errs[-3:]) if errs else '(no details)'
        raise BackendError(
            f'Failed to undefine {self.vm_name}; domain is still present after retries.\n{detail}'
        )

    def current_state(self) -> VirtualMachineState:
        res = self._virsh('domstate', self.vm_name, check=False)
        if res.code != 0:
            self.state = VirtualMachineState.OFF
        else:
            self.state = _DOMSTATE_MAP.get(
                res.stdout.strip().lower(), VirtualMachineState.UNKNOWN
            )
        return self.state

    def management_ipv4(self) -> str:
        res = self._virsh('domifaddr', self.vm_name, '--source', 'lease', check=False)
        for line in res.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 4 and parts[2] == 'ipv4':
                return parts[3].split('/', 1)[0]
        return 'UNKNOWN'
