"""Host dependency checks for the native libvirt backend."""

from __future__ import annotations

from pathlib import Path

from .util import which

REQUIRED_CMDS = [
    'virsh',
    'virt-install',
    'qemu-img',
    'curl',
    'ip',
]


def check_commands() -> list[str]:
    return [c for c in REQUIRED_CMDS if which(c) is None]


def host_is_debian_like() -> bool:
    try:
        data = Path('/etc/os-release').read_text(encoding='utf-8')
        return any(
            k in data for k in ('ID=debian', 'ID=ubuntu', 'ID_LIKE=debian')
        )
    except OSError:
        return False


def install_hint() -> str:
    if host_is_debian_like():
        return (
            'Install them with: sudo apt-get install -y qemu-kvm '
            'libvirt-daemon-system libvirt-clients virtinst qemu-utils curl iproute2'
        )
    return 'Install libvirt, virt-install, qemu-img, curl and iproute2 for your distribution.'
