"""Tests for host network enumeration and bridge setup."""

from __future__ import annotations

import json
from pathlib import Path

from multivm.models import NetworkInterface, NetworkInterfaceInfo
from multivm.network import infer_bridged_interfaces
from multivm.platform import Platform
from multivm.util import CmdError, CmdResult

IP_LINK = [
    {'ifname': 'lo', 'link_type': 'loopback'},
    {'ifname': 'eth0', 'link_type': 'ether', 'master': 'br0'},
    {'ifname': 'eth1', 'link_type': 'ether'},
    {'ifname': 'wlan0', 'link_type': 'ether'},
    {'ifname': 'br0', 'link_type': 'ether', 'linkinfo': {'info_kind': 'bridge'}},
    {'ifname': 'br1', 'link_type': 'ether', 'linkinfo': {'info_kind': 'bridge'}},
    {'ifname': 'tap0', 'link_type': 'ether', 'linkinfo': {'info_kind': 'tun'}},
]


def test_network_interfaces_info(monkeypatch, tmp_path: Path) -> None:
    (tmp_path / 'wlan0' / 'wireless').mkdir(parents=True)
    monkeypatch.setattr(
        'multivm.platform.run_cmd',
        lambda *a, **k: CmdResult(0, json.dumps(IP_LINK), ''),
    )
    info = Platform(sysfs_root=tmp_path).network_interfaces_info()
    assert 'lo' not in info
    assert info['eth1'] == NetworkInterfaceInfo('eth1', 'ethernet', 'Ethernet device')
    assert info['wlan0'].type == 'wifi'
    assert info['br0'].links == ['eth0']
    assert info['br0'].description == 'Network bridge with eth0'
    assert info['br1'].description == 'Network bridge'
    assert info['tap0'].type == 'tun'


def test_bridge_name_fits_ifname_limit() -> None:
    assert Platform().bridge_name_for('enp0s31f6-extra') == 'br-enp0s31f6-ex'


class FakeLinks:
    """Host link table answering the ``ip`` commands used for bridge setup."""

    def __init__(self, *names: str):
        self.links = {n: {'ifname': n} for n in names}
        self.calls: list[tuple[list[str], bool]] = []

    def __call__(self, cmd, **kwargs):
        cmd = list(cmd)
        self.calls.append((cmd, bool(kwargs.get('sudo'))))
        if cmd[:4] == ['ip', '-json', 'link', 'show']:
            entry = self.links.get(cmd[4])
            if entry is None:
                return CmdResult(1, '', f'Device "{cmd[4]}" does not exist.')
            return CmdResult(0, json.dumps([entry]), '')
        if cmd[2] == 'add':
            res = CmdResult(0, '', '')
            if cmd[4] in self.links:
                res = CmdResult(2, '', 'RTNETLINK answers: File exists')
                if kwargs.get('check'):
                    raise CmdError(cmd, res)
                return res
            self.links[cmd[4]] = {'ifname': cmd[4]}
            return res
        if cmd[2] == 'set' and cmd[4] == 'master':
            self.links[cmd[3]]['master'] = cmd[5]
        return CmdResult(0, '', '')

    def changes(self) -> list[list[str]]:
        return [cmd[2:5] for cmd, _ in self.calls if cmd[1] == 'link']


def test_create_bridge_with(monkeypatch) -> None:
    links = FakeLinks('eth1')
    monkeypatch.setattr('multivm.platform.run_cmd', links)
    assert Platform().create_bridge_with('eth1') == 'br-eth1'
    assert links.changes() == [
        ['add', 'name', 'br-eth1'],
        ['set', 'eth1', 'master'],
        ['set', 'br-eth1', 'up'],
    ]
    assert all(sudo for cmd, sudo in links.calls if cmd[1] == 'link')
    assert links.links['eth1']['master'] == 'br-eth1'


def test_create_bridge_with_is_repeatable(monkeypatch) -> None:
    links = FakeLinks('eth1')
    monkeypatch.setattr('multivm.platform.run_cmd', links)
    platform = Platform()
    assert platform.create_bridge_with('eth1') == 'br-eth1'
    assert platform.create_bridge_with('eth1') == 'br-eth1'
    adds = [c for c in links.changes() if c[0] == 'add']
    enslaves = [c for c in links.changes() if c[2] == 'master']
    assert len(adds) == 1
    assert len(enslaves) == 1


def test_two_requests_for_one_adapter_share_bridge(monkeypatch) -> None:
    links = FakeLinks('eth0')
    monkeypatch.setattr('multivm.platform.run_cmd', links)
    nets = [NetworkInterface('eth0', 'aa', True), NetworkInterface('eth0', 'bb', True)]
    eth0 = NetworkInterfaceInfo('eth0', 'ethernet', 'Ethernet device')
    infer_bridged_interfaces(nets, [eth0], Platform().create_bridge_with)
    assert [n.id for n in nets] == ['br-eth0', 'br-eth0']
    assert [c for c in links.changes() if c[0] == 'add'] == [['add', 'name', 'br-eth0']]
