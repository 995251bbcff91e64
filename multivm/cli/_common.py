from __future__ import annotations

from pathlib import Path

import scriptconfig as scfg
from loguru import logger

from .. import config as config_mod
from ..backends import VirtualMachineFactory, make_factory
from ..config import MultiVMConfig
from ..models import VirtualMachineDescription, VMImage
from ..platform import Platform
from ..settings import SettingsRegistry, build_registry
from ..store import InstanceRecord

log = logger


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help='Path to config TOML (default: user config dir).'
    )
    store = scfg.Value(
        None, help='Path to instance store TOML (default: user data dir).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


def _cfg_path(p: str | None) -> Path:
    return Path(p).resolve() if p else config_mod.config_path()


def _store_path(p: str | None) -> Path | None:
    return Path(p).resolve() if p else None


def _load_cfg(config_path: str | None) -> MultiVMConfig:
    return config_mod.load(_cfg_path(config_path)).expanded_paths()


def _registry(args) -> SettingsRegistry:
    return build_registry(_cfg_path(args.config), _store_path(args.store))


def _factory(cfg: MultiVMConfig) -> VirtualMachineFactory:
    log.debug('Using backend driver {}', cfg.backend.driver)
    return make_factory(cfg, Platform())


def _parse_networks_arg(raw: str) -> list[str]:
    return [p.strip() for p in str(raw or '').split(',') if p.strip()]


def _desc_from_record(rec: InstanceRecord) -> VirtualMachineDescription:
    return VirtualMachineDescription(
        num_cores=rec.cpus,
        mem_size=rec.mem_size,
        disk_space=rec.disk_space,
        vm_name=rec.name,
        default_mac_address=rec.mac_address,
        extra_interfaces=list(rec.extra_interfaces),
        image=VMImage(id=rec.image),
    )
