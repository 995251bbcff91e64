"""Tests for bridged interface inference and backend network matching."""

from __future__ import annotations

from multivm.models import NetworkInterface, NetworkInterfaceInfo
from multivm.network import infer_bridged_interfaces, match_backend_networks


def _eth(name: str) -> NetworkInterfaceInfo:
    return NetworkInterfaceInfo(name, 'ethernet', 'Ethernet device')


def _br(name: str, links: list[str]) -> NetworkInterfaceInfo:
    return NetworkInterfaceInfo(name, 'bridge', 'Network bridge', links)


def _fail_setup(iface: str) -> str:
    raise AssertionError(f'unexpected bridge setup for {iface}')


def test_existing_bridge_is_used() -> None:
    nets = [NetworkInterface('eth0', 'aa', True)]
    infer_bridged_interfaces(nets, [_eth('eth0'), _br('br0', ['eth0'])], _fail_setup)
    assert nets[0].id == 'br0'


def test_bridge_is_synthesized_when_absent() -> None:
    calls = []

    def setup(iface: str) -> str:
        calls.append(iface)
        return f'br-{iface}'

    nets = [NetworkInterface('eth1', 'aa', True)]
    infer_bridged_interfaces(nets, [_eth('eth1')], setup)
    assert nets[0].id == 'br-eth1'
    assert calls == ['eth1']


def test_bridge_requests_and_unknown_ids_untouched() -> None:
    nets = [
        NetworkInterface('br0', 'aa', True),
        NetworkInterface('wlan0', 'bb', True),
        NetworkInterface('nosuch', 'cc', True),
    ]
    hosts = [
        _br('br0', []),
        NetworkInterfaceInfo('wlan0', 'wifi', 'Wi-Fi device'),
    ]
    infer_bridged_interfaces(nets, hosts, _fail_setup)
    assert [n.id for n in nets] == ['br0', 'wlan0', 'nosuch']


def test_bridge_is_not_reused_within_one_call() -> None:
    created = []

    def setup(iface: str) -> str:
        created.append(iface)
        return f'br-{iface}-{len(created)}'

    nets = [NetworkInterface('eth0', 'aa', True), NetworkInterface('eth0', 'bb', True)]
    infer_bridged_interfaces(nets, [_eth('eth0'), _br('br0', ['eth0'])], setup)
    assert nets[0].id == 'br0'
    assert nets[1].id == 'br-eth0-1'
    assert created == ['eth0']


def test_match_backend_networks_prefers_backend_description() -> None:
    platform = {
        'br0': _br('br0', ['eth0']),
        'eth0': _eth('eth0'),
        'wlan0': NetworkInterfaceInfo('wlan0', 'wifi', 'Wi-Fi device'),
    }
    backend = [
        {'name': 'br0', 'description': 'LAN bridge'},
        {'name': 'eth0', 'description': ''},
        {'name': 'wlan0', 'description': 'wifi'},
        {'name': 'lxdbr0', 'description': 'managed'},
    ]
    out = match_backend_networks(backend, platform)
    assert [(n.id, n.description) for n in out] == [
        ('br0', 'LAN bridge'),
        ('eth0', 'Ethernet device'),
    ]
    assert out[0].links == ['eth0']
    assert 'br0' in platform


def test_match_backend_networks_matches_each_host_network_once() -> None:
    platform = {'eth0': _eth('eth0')}
    backend = [{'name': 'eth0'}, {'name': 'eth0', 'description': 'dup'}]
    out = match_backend_networks(backend, platform)
    assert len(out) == 1
