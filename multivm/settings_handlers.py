"""Settings handlers shipped with multivm.

``ConfigSettingsHandler`` owns the literal daemon/client keys persisted in the
TOML config file. ``InstanceSettingsHandler`` owns the templated per-instance
keys (``local.<instance>.cpus`` and friends) persisted in the instance store.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from . import config as config_mod
from .errors import (
    InstanceSettingsError,
    InvalidSettingValueError,
    UnknownSettingKeyError,
)
from .models import VirtualMachineState
from .settings import SettingsHandler
from .store import find_instance, load_store, save_store
from .util import format_size, parse_size

MIN_MEMORY_SIZE = 128 * 1024**2
INSTANCE_KEY_TEMPLATE = 'local.<instance>.{}'
INSTANCE_PROPERTIES = ('cpus', 'memory', 'disk')
_INSTANCE_KEY_RE = re.compile(r'^local\.([^.<>]+)\.(cpus|memory|disk)$')


def _validate_driver(key: str, value: str) -> object:
    val = value.strip().lower()
    if val not in config_mod.SUPPORTED_DRIVERS:
        raise InvalidSettingValueError(
            key,
            value,
            f'supported drivers: {", ".join(config_mod.SUPPORTED_DRIVERS)}',
        )
    return val


def _validate_positive_int(key: str, value: str) -> object:
    try:
        num = int(value.strip())
    except ValueError:
        raise InvalidSettingValueError(key, value, 'needs a positive integer')
    if num <= 0:
        raise InvalidSettingValueError(key, value, 'needs a positive integer')
    return num


def _validate_verbosity(key: str, value: str) -> object:
    try:
        num = int(value.strip())
    except ValueError:
        raise InvalidSettingValueError(key, value, 'needs an integer in 0..3')
    if not 0 <= num <= 3:
        raise InvalidSettingValueError(key, value, 'needs an integer in 0..3')
    return num


def _validate_non_empty(key: str, value: str) -> object:
    if not value.strip():
        raise InvalidSettingValueError(key, value, 'must not be empty')
    return value.strip()


def _accept_any(key: str, value: str) -> object:
    return value.strip()


@dataclass(frozen=True)
class ConfigKey:
    section: str
    attr: str
    validate: Callable[[str, str], object]


CONFIG_KEYS: dict[str, ConfigKey] = {
    'local.driver': ConfigKey('backend', 'driver', _validate_driver),
    'local.lxd.socket': ConfigKey('backend', 'lxd_socket', _validate_non_empty),
    'local.libvirt.uri': ConfigKey('backend', 'libvirt_uri', _validate_non_empty),
    'local.bridged-network': ConfigKey('network', 'bridged_network', _accept_any),
    'local.image.days-to-expire': ConfigKey(
        'image', 'days_to_expire', _validate_positive_int
    ),
    'local.image.default-release': ConfigKey(
        'image', 'default_release', _validate_non_empty
    ),
    'client.verbosity': ConfigKey('', 'verbosity', _validate_verbosity),
}


class ConfigSettingsHandler(SettingsHandler):
    """Literal keys mapped onto fields of :class:`MultiVMConfig`."""

    def __init__(self, path: Path | None = None):
        self.path = path

    def keys(self) -> set[str]:
        return set(CONFIG_KEYS)

    def _lookup(self, key: str) -> ConfigKey:
        entry = CONFIG_KEYS.get(key)
        if entry is None:
            raise UnknownSettingKeyError(key)
        return entry

    def get(self, key: str) -> str:
        entry = self._lookup(key)
        cfg = config_mod.load(self.path)
        obj = getattr(cfg, entry.section) if entry.section else cfg
        return str(getattr(obj, entry.attr))

    def set(self, key: str, value: str) -> None:
        entry = self._lookup(key)
        interpreted = entry.validate(key, value)
        cfg = config_mod.load(self.path)
        obj = getattr(cfg, entry.section) if entry.section else cfg
        setattr(obj, entry.attr, interpreted)
        config_mod.save(self.path, cfg)


class InstanceSettingsHandler(SettingsHandler):
    """Templated per-instance keys backed by the instance store."""

    def __init__(self, path: Path | None = None):
        self.path = path

    def keys(self) -> set[str]:
        return {INSTANCE_KEY_TEMPLATE.format(p) for p in INSTANCE_PROPERTIES}

    @staticmethod
    def _parse_key(key: str) -> tuple[str, str]:
        match = _INSTANCE_KEY_RE.match(key)
        if match is None:
            raise UnknownSettingKeyError(key)
        return match.group(1), match.group(2)

    def get(self, key: str) -> str:
        name, prop = self._parse_key(key)
        rec = find_instance(load_store(self.path), name)
        if rec is None:
            raise InstanceSettingsError('read settings', name, 'No such instance')
        if prop == 'cpus':
            return str(rec.cpus)
        if prop == 'memory':
            return format_size(rec.mem_size)
        return format_size(rec.disk_space)

    def set(self, key: str, value: str) -> None:
        name, prop = self._parse_key(key)
        reg = load_store(self.path)
        rec = find_instance(reg, name)
        if rec is None:
            raise InstanceSettingsError('update settings', name, 'No such instance')
        if rec.state not in (
            VirtualMachineState.OFF.value,
            VirtualMachineState.STOPPED.value,
        ):
            raise InstanceSettingsError(
                'update settings', name, 'Instance must be stopped for modification'
            )
        if prop == 'cpus':
            rec.cpus = int(_validate_positive_int(key, value))  # type: ignore[arg-type]
        elif prop == 'memory':
            size = self._parse_size(key, value)
            if size < MIN_MEMORY_SIZE:
                raise InvalidSettingValueError(
                    key, value, f'memory must be at least {format_size(MIN_MEMORY_SIZE)}'
                )
            rec.mem_size = size
        else:
            size = self._parse_size(key, value)
            if size < rec.disk_space:
                raise InvalidSettingValueError(
                    key, value, 'disk can only be expanded'
                )
            rec.disk_space = size
        save_store(reg, self.path)

    @staticmethod
    def _parse_size(key: str, value: str) -> int:
        try:
            return parse_size(value)
        except ValueError:
            raise InvalidSettingValueError(key, value, 'needs a size such as 2G')
