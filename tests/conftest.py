from __future__ import annotations

from pathlib import Path

import pytest

from multivm.errors import BackendError, NotFoundError
from multivm.models import NetworkInterfaceInfo

BASE = 'http://lxd/1.0'


class FakeLXDClient:
    """In-memory stand-in for ``LXDClient`` keyed on ``(method, url)``."""

    def __init__(self, routes: dict | None = None):
        self.base_url = BASE
        self.routes: dict = dict(routes or {})
        self.calls: list[tuple[str, str, dict | None]] = []
        self.waited: list[dict] = []

    def request(self, method, url, json_data=None, *, timeout=None):
        self.calls.append((method, url, json_data))
        reply = self.routes.get((method, url))
        if reply is None:
            raise NotFoundError(f'{method} {url}: not found')
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(json_data)
        return reply

    def wait(self, reply, *, timeout=None):
        self.waited.append(reply)
        return reply

    def methods(self, method: str) -> list[str]:
        return [url for m, url, _ in self.calls if m == method]


class FakePlatform:
    def __init__(self, networks: dict[str, NetworkInterfaceInfo] | None = None):
        self.networks = dict(networks or {})
        self.bridges: list[str] = []

    def network_interfaces_info(self) -> dict[str, NetworkInterfaceInfo]:
        return dict(self.networks)

    def create_bridge_with(self, interface: str) -> str:
        self.bridges.append(interface)
        return f'br-{interface}'


class RecordingMonitor:
    def __init__(self):
        self.states: list[tuple[str, str]] = []

    def persist_state_for(self, name, state) -> None:
        self.states.append((name, state.value))


def sync(metadata=None) -> dict:
    return {'type': 'sync', 'status_code': 200, 'metadata': metadata}


def async_op(op_id: str = 'op1') -> dict:
    return {'type': 'async', 'status_code': 100, 'operation': f'/1.0/operations/{op_id}'}


def forbidden(url: str) -> BackendError:
    return BackendError(f'GET {url}: not authorized')


@pytest.fixture
def fake_client() -> FakeLXDClient:
    return FakeLXDClient()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / 'data'
