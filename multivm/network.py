"""Network inference: map requested VM interfaces onto host networks.

VMs attach to bridges, not raw adapters. Requests naming an ethernet adapter
are upgraded to a bridge that already fronts it, or to a freshly synthesized
one.
"""

from __future__ import annotations

from typing import Callable, Iterable, Mapping, Sequence

from loguru import logger

from .models import NetworkInterface, NetworkInterfaceInfo

log = logger

SUPPORTED_NETWORK_TYPES = ('bridge', 'ethernet')


def match_backend_networks(
    backend_networks: Iterable[Mapping],
    platform_networks: Mapping[str, NetworkInterfaceInfo],
    supported_types: Sequence[str] = SUPPORTED_NETWORK_TYPES,
) -> list[NetworkInterfaceInfo]:
    """Intersect backend-visible networks with host-visible ones.

    Each backend entry is a mapping with ``name`` and ``description``. A host
    network is matched at most once. A non-empty backend description wins over
    the host description.
    """
    remaining = dict(platform_networks)
    ret: list[NetworkInterfaceInfo] = []
    for network in backend_networks:
        net_id = str(network.get('name') or '')
        if not net_id:
            continue
        info = remaining.get(net_id)
        if info is None or info.type not in supported_types:
            continue
        backend_desc = str(network.get('description') or '')
        ret.append(
            NetworkInterfaceInfo(
                id=net_id,
                type=info.type,
                description=backend_desc or info.description,
                links=list(info.links),
            )
        )
        del remaining[net_id]
    return ret


def infer_bridged_interfaces(
    extra_interfaces: list[NetworkInterface],
    host_networks: Sequence[NetworkInterfaceInfo],
    setup_bridge: Callable[[str], str],
) -> None:
    """Rewrite ``id`` of each ethernet-backed request to its backing bridge, in place.

    A bridge found through its ``links`` is claimed by the first request that
    uses it; later requests for the same adapter go through ``setup_bridge``.
    """
    by_id: dict[str, NetworkInterfaceInfo] = {}
    for host_net in host_networks:
        by_id.setdefault(host_net.id, host_net)
    claimed: set[str] = set()
    for net in extra_interfaces:
        info = by_id.get(net.id)
        if info is None or info.type != 'ethernet':
            continue
        bridge = next(
            (
                cand
                for cand in host_networks
                if cand.type == 'bridge'
                and net.id in cand.links
                and cand.id not in claimed
            ),
            None,
        )
        if bridge is not None:
            claimed.add(bridge.id)
            log.debug('Using existing bridge {} for {}', bridge.id, net.id)
            net.id = bridge.id
        else:
            new_id = setup_bridge(net.id)
            log.debug('Synthesized bridge {} for {}', new_id, net.id)
            net.id = new_id
