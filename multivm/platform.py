"""Host platform collaborator: network enumeration and bridge creation."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from .models import NetworkInterfaceInfo
from .util import run_cmd

log = logger

MAX_IFNAME_LEN = 15


class Platform:
    """Linux host platform.

    An explicitly constructed context object; pass it to the components that
    need host information instead of looking it up globally.
    """

    def __init__(self, *, sysfs_root: Path = Path('/sys/class/net')):
        self.sysfs_root = sysfs_root

    def network_interfaces_info(self) -> dict[str, NetworkInterfaceInfo]:
        res = run_cmd(['ip', '-details', '-json', 'link', 'show'], check=True, capture=True)
        entries = json.loads(res.stdout or '[]')
        members: dict[str, list[str]] = {}
        for entry in entries:
            master = entry.get('master')
            if master:
                members.setdefault(master, []).append(entry['ifname'])

        ret: dict[str, NetworkInterfaceInfo] = {}
        for entry in entries:
            ifname = entry.get('ifname', '')
            if not ifname or entry.get('link_type') == 'loopback':
                continue
            kind = (entry.get('linkinfo') or {}).get('info_kind', '')
            if kind == 'bridge':
                links = sorted(members.get(ifname, []))
                desc = (
                    f'Network bridge with {", ".join(links)}'
                    if links
                    else 'Network bridge'
                )
                ret[ifname] = NetworkInterfaceInfo(ifname, 'bridge', desc, links)
            elif not kind and entry.get('link_type') == 'ether':
                if (self.sysfs_root / ifname / 'wireless').exists():
                    ret[ifname] = NetworkInterfaceInfo(ifname, 'wifi', 'Wi-Fi device')
                else:
                    ret[ifname] = NetworkInterfaceInfo(
                        ifname, 'ethernet', 'Ethernet device'
                    )
            else:
                kind = kind or entry.get('link_type', 'unknown')
                ret[ifname] = NetworkInterfaceInfo(
                    ifname, kind, f'Virtual {kind} device'
                )
        return ret

    def bridge_name_for(self, interface: str) -> str:
        return f'br-{interface}'[:MAX_IFNAME_LEN]

    def link_info(self, ifname: str) -> dict | None:
        """Return the `ip -json link show` entry for ``ifname`` or None if absent."""
        res = run_cmd(['ip', '-json', 'link', 'show', ifname], check=False, capture=True)
        if res.code != 0:
            return None
        entries = json.loads(res.stdout or '[]')
        return entries[0] if entries else None

    def create_bridge_with(self, interface: str) -> str:
        """Ensure a bridge enslaving ``interface`` exists and return its name.

        Safe to call repeatedly: an existing bridge or membership is reused.
        """
        bridge = self.bridge_name_for(interface)
        if self.link_info(bridge) is None:
            log.info('Creating bridge {} for {}', bridge, interface)
            run_cmd(
                ['ip', 'link', 'add', 'name', bridge, 'type', 'bridge'],
                sudo=True,
                check=True,
                capture=True,
            )
        else:
            log.debug('Bridge {} already exists', bridge)
        port = self.link_info(interface) or {}
        if port.get('master') != bridge:
            run_cmd(
                ['ip', 'link', 'set', interface, 'master', bridge],
                sudo=True,
                check=True,
                capture=True,
            )
        run_cmd(['ip', 'link', 'set', bridge, 'up'], sudo=True, check=True, capture=True)
        return bridge
