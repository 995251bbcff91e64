"""LXD-backed virtual machine handle."""

from __future__ import annotations

from loguru import logger

from ...errors import BackendError, ErrorKind
from ...models import VirtualMachineDescription, VirtualMachineState
from ..base import VirtualMachine, VMStatusMonitor
from .client import LXDClient

log = logger

_STATUS_MAP = {
    'Created': VirtualMachineState.STOPPED,
    'Stopped': VirtualMachineState.STOPPED,
    'Starting': VirtualMachineState.STARTING,
    'Running': VirtualMachineState.RUNNING,
    'Stopping': VirtualMachineState.DELAYED_SHUTDOWN,
    'Freezing': VirtualMachineState.SUSPENDING,
    'Frozen': VirtualMachineState.SUSPENDED,
    'Thawed': VirtualMachineState.RUNNING,
}


def resource_config(desc: VirtualMachineDescription) -> dict:
    return {
        'limits.cpu': str(desc.num_cores),
        'limits.memory': str(desc.mem_size),
    }


def root_device(desc: VirtualMachineDescription) -> dict:
    return {
        'path': '/',
        'pool': 'default',
        'size': str(desc.disk_space),
        'type': 'disk',
    }


def instance_payload(desc: VirtualMachineDescription) -> dict:
    config = resource_config(desc)
    if desc.default_mac_address:
        config['volatile.eth0.hwaddr'] = desc.default_mac_address
    devices: dict[str, dict] = {'root': root_device(desc)}
    for idx, net in enumerate(desc.extra_interfaces, start=1):
        devices[f'eth{idx}'] = {
            'name': f'eth{idx}',
            'nictype': 'bridged',
            'parent': net.id,
            'hwaddr': net.mac_address,
            'type': 'nic',
        }
    return {
        'name': desc.vm_name,
        'type': 'virtual-machine',
        'config': config,
        'devices': devices,
        'source': {'type': 'image', 'fingerprint': desc.image.id},
    }


class LXDVirtualMachine(VirtualMachine):
    def __init__(
        self,
        desc: VirtualMachineDescription,
        monitor: VMStatusMonitor,
        client: LXDClient,
        base_url: str,
        bridge_name: str,
        *,
        project: str,
    ):
        super().__init__(desc.vm_name, monitor)
        self.desc = desc
        self.client = client
        self.base_url = base_url
        self.bridge_name = bridge_name
        self.project = project
        try:
            self.current_state()
        except BackendError as ex:
            if ex.kind is not ErrorKind.NOT_FOUND:
                raise
            log.info('Creating instance "{}" in LXD', self.vm_name)
            reply = self.client.request(
                'POST',
                f'{self.base_url}/instances?project={self.project}',
                instance_payload(desc),
            )
            self.client.wait(reply)
            self.current_state()
        self.update_state()

    @property
    def url(self) -> str:
        return f'{self.base_url}/instances/{self.vm_name}'

    @property
    def state_url(self) -> str:
        return f'{self.url}/state?project={self.project}'

    def _request_state(self, action: str, **extra) -> None:
        reply = self.client.request('PUT', self.state_url, {'action': action, **extra})
        self.client.wait(reply)

    def apply_resources(self) -> None:
        """Push cpus, memory and root disk size from the description onto the instance."""
        patch = {
            'config': resource_config(self.desc),
            'devices': {'root': root_device(self.desc)},
        }
        reply = self.client.request('PATCH', f'{self.url}?project={self.project}', patch)
        self.client.wait(reply)
        log.debug('Applied resources to "{}"', self.vm_name)

    def start(self) -> None:
        if self.current_state() is VirtualMachineState.SUSPENDED:
            log.info('Resuming "{}" from a suspended state', self.vm_name)
            self._request_state('unfreeze')
        else:
            if self.state is VirtualMachineState.STOPPED:
                self.apply_resources()
            self._request_state('start')
        self.state = VirtualMachineState.STARTING
        self.update_state()

    def shutdown(self) -> None:
        present = self.current_state()
        if present in (VirtualMachineState.STOPPED, VirtualMachineState.OFF):
            log.debug('Ignoring shutdown since "{}" is already stopped', self.vm_name)
            return
        self._request_state('stop', timeout=60)
        self.state = VirtualMachineState.STOPPED
        self.update_state()

    def suspend(self) -> None:
        self._request_state('freeze')
        self.state = VirtualMachineState.SUSPENDED
        self.update_state()

    def delete(self) -> None:
        if self.current_state() is VirtualMachineState.RUNNING:
            self._request_state('stop', force=True)
        reply = self.client.request('DELETE', f'{self.url}?project={self.project}')
        self.client.wait(reply)
        self.state = VirtualMachineState.OFF
        log.info('Deleted instance "{}"', self.vm_name)

    def _state_metadata(self) -> dict:
        reply = self.client.request('GET', self.state_url)
        return reply.get('metadata') or {}

    def current_state(self) -> VirtualMachineState:
        status = self._state_metadata().get('status', '')
        self.state = _STATUS_MAP.get(status, VirtualMachineState.UNKNOWN)
        return self.state

    def management_ipv4(self) -> str:
        networks = self._state_metadata().get('network') or {}
        for addr in (networks.get('eth0') or {}).get('addresses') or []:
            if addr.get('family') == 'inet':
                return str(addr.get('address', ''))
        return 'UNKNOWN'
