"""Single-file TOML store of managed instances and their last known state."""

from __future__ import annotations

import threading
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .config import app_dir
from .models import NetworkInterface, VirtualMachineState

log = logger


@dataclass
class InstanceRecord:
    name: str
    backend: str = 'lxd'
    cpus: int = 1
    mem_size: int = 1024**3
    disk_space: int = 5 * 1024**3
    image: str = ''
    state: str = VirtualMachineState.OFF.value
    mac_address: str = ''
    extra_interfaces: list[NetworkInterface] = field(default_factory=list)


@dataclass
class Store:
    schema_version: int = 1
    instances: list[InstanceRecord] = field(default_factory=list)


def store_path() -> Path:
    return app_dir('data') / 'instances.toml'


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def _emit_toml_kv(lines: list[str], key: str, val: object) -> None:
    if isinstance(val, bool):
        lines.append(f'{key} = {"true" if val else "false"}')
    elif isinstance(val, int):
        lines.append(f'{key} = {val}')
    else:
        lines.append(f'{key} = "{_toml_escape(str(val))}"')


def load_store(path: Path | None = None) -> Store:
    fpath = path or store_path()
    if not fpath.exists():
        return Store()
    raw = tomllib.loads(fpath.read_text(encoding='utf-8'))
    reg = Store()
    reg.schema_version = int(raw.get('schema_version', 1))
    for item in raw.get('instances', []):
        if not isinstance(item, dict):
            continue
        name = str(item.get('name', '')).strip()
        if not name:
            continue
        extra = [
            NetworkInterface(
                id=str(n.get('id', '')),
                mac_address=str(n.get('mac_address', '')),
                auto_mode=bool(n.get('auto_mode', False)),
            )
            for n in item.get('extra_interfaces', [])
            if isinstance(n, dict)
        ]
        reg.instances.append(
            InstanceRecord(
                name=name,
                backend=str(item.get('backend', 'lxd')),
                cpus=int(item.get('cpus', 1)),
                mem_size=int(item.get('mem_size', 1024**3)),
                disk_space=int(item.get('disk_space', 5 * 1024**3)),
                image=str(item.get('image', '')),
                state=str(item.get('state', VirtualMachineState.OFF.value)),
                mac_address=str(item.get('mac_address', '')),
                extra_interfaces=extra,
            )
        )
    return reg


def save_store(reg: Store, path: Path | None = None) -> Path:
    fpath = path or store_path()
    fpath.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [f'schema_version = {reg.schema_version}', '']
    for rec in sorted(reg.instances, key=lambda r: r.name):
        lines.append('[[instances]]')
        for key in (
            'name',
            'backend',
            'cpus',
            'mem_size',
            'disk_space',
            'image',
            'state',
            'mac_address',
        ):
            _emit_toml_kv(lines, key, getattr(rec, key))
        for net in rec.extra_interfaces:
            lines.append('[[instances.extra_interfaces]]')
            _emit_toml_kv(lines, 'id', net.id)
            _emit_toml_kv(lines, 'mac_address', net.mac_address)
            _emit_toml_kv(lines, 'auto_mode', net.auto_mode)
        lines.append('')
    fpath.write_text('\n'.join(lines).rstrip() + '\n', encoding='utf-8')
    return fpath


def find_instance(reg: Store, name: str) -> InstanceRecord | None:
    for rec in reg.instances:
        if rec.name == name:
            return rec
    return None


def upsert_instance(reg: Store, rec: InstanceRecord) -> None:
    existing = find_instance(reg, rec.name)
    if existing is not None:
        i = reg.instances.index(existing)
        reg.instances[i] = rec
    else:
        reg.instances.append(rec)


def remove_instance(reg: Store, name: str) -> bool:
    before = len(reg.instances)
    reg.instances = [r for r in reg.instances if r.name != name]
    return len(reg.instances) != before


class StoreStatusMonitor:
    """VM status observer that persists state transitions into the store."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self._lock = threading.Lock()

    def persist_state_for(self, name: str, state: VirtualMachineState) -> None:
        with self._lock:
            reg = load_store(self.path)
            rec = find_instance(reg, name)
            if rec is None:
                log.debug('No store record for {}; state {} not persisted', name, state.value)
                return
            rec.state = state.value
            save_store(reg, self.path)
        log.debug('Persisted state {} for {}', state.value, name)
