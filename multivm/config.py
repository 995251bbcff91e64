"""Dataclass configuration persisted as TOML."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

import ubelt as ub

from .util import expand

DEFAULT_LXD_SOCKET = '/var/snap/lxd/common/lxd/unix.socket'
DEFAULT_LXD_URL = 'http://lxd/1.0'
DEFAULT_LIBVIRT_URI = 'qemu:///system'
SUPPORTED_DRIVERS = ('lxd', 'libvirt')

_SECTIONS = ('backend', 'network', 'image', 'paths')


@dataclass
class BackendConfig:
    driver: str = 'lxd'
    lxd_socket: str = DEFAULT_LXD_SOCKET
    lxd_url: str = DEFAULT_LXD_URL
    libvirt_uri: str = DEFAULT_LIBVIRT_URI
    timeout_s: int = 30


@dataclass
class NetworkConfig:
    name: str = 'multivm'
    bridge: str = 'virbr-multivm'
    subnet_cidr: str = '10.97.0.0/24'
    gateway_ip: str = '10.97.0.1'
    dhcp_start: str = '10.97.0.100'
    dhcp_end: str = '10.97.0.200'
    bridged_network: str = ''


@dataclass
class ImageConfig:
    days_to_expire: int = 14
    default_release: str = 'noble'


@dataclass
class PathsConfig:
    data_dir: str = ''
    cache_dir: str = ''


@dataclass
class MultiVMConfig:
    backend: BackendConfig = field(default_factory=BackendConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    verbosity: int = 1

    def expanded_paths(self) -> 'MultiVMConfig':
        self.paths.data_dir = expand(self.paths.data_dir or str(app_dir('data')))
        self.paths.cache_dir = expand(
            self.paths.cache_dir or str(app_dir('cache'))
        )
        self.backend.lxd_socket = expand(self.backend.lxd_socket)
        return self


def app_dir(kind: str) -> Path:
    return Path(ub.Path.appdir('multivm', type=kind).ensuredir())


def config_path() -> Path:
    return app_dir('config') / 'config.toml'


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def dump_toml(cfg: MultiVMConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    # Top-level keys must precede the first table header.
    if d.get('verbosity', 1) != 1:
        lines.append(f'verbosity = {d["verbosity"]}')
        lines.append('')
    for section, body in d.items():
        if not isinstance(body, dict):
            continue
        lines.append(f'[{section}]')
        for k, v in body.items():
            if isinstance(v, bool):
                lines.append(f'{k} = {"true" if v else "false"}')
            elif isinstance(v, int):
                lines.append(f'{k} = {v}')
            else:
                lines.append(f'{k} = "{_toml_escape(str(v))}"')
        lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def load(path: Path | None = None) -> MultiVMConfig:
    fpath = path or config_path()
    cfg = MultiVMConfig()
    if not fpath.exists():
        return cfg
    raw = tomllib.loads(fpath.read_text(encoding='utf-8'))
    for section in _SECTIONS:
        if section in raw and isinstance(raw[section], dict):
            obj = getattr(cfg, section)
            for k, v in raw[section].items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def save(path: Path | None, cfg: MultiVMConfig) -> Path:
    fpath = path or config_path()
    fpath.parent.mkdir(parents=True, exist_ok=True)
    fpath.write_text(dump_toml(cfg), encoding='utf-8')
    return fpath
