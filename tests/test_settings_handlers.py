"""Tests for the shipped settings handlers."""

from __future__ import annotations

from pathlib import Path

import pytest

from multivm.config import load
from multivm.errors import (
    InstanceSettingsError,
    InvalidSettingValueError,
    UnknownSettingKeyError,
)
from multivm.settings import build_registry
from multivm.settings_handlers import ConfigSettingsHandler, InstanceSettingsHandler
from multivm.store import InstanceRecord, Store, find_instance, load_store, save_store


@pytest.fixture
def paths(tmp_path: Path) -> tuple[Path, Path]:
    store = Store()
    store.instances.append(
        InstanceRecord(name='dev', cpus=2, mem_size=1024**3, disk_space=5 * 1024**3)
    )
    store.instances.append(InstanceRecord(name='busy', state='running'))
    spath = tmp_path / 'instances.toml'
    save_store(store, spath)
    return tmp_path / 'config.toml', spath


def test_config_handler_get_defaults(paths) -> None:
    handler = ConfigSettingsHandler(paths[0])
    assert handler.get('local.driver') == 'lxd'
    assert handler.get('local.image.days-to-expire') == '14'
    assert handler.get('client.verbosity') == '1'


def test_config_handler_set_persists(paths) -> None:
    cpath = paths[0]
    handler = ConfigSettingsHandler(cpath)
    handler.set('local.driver', 'LIBVIRT')
    handler.set('local.image.days-to-expire', '7')
    handler.set('client.verbosity', '2')
    cfg = load(cpath)
    assert cfg.backend.driver == 'libvirt'
    assert cfg.image.days_to_expire == 7
    assert cfg.verbosity == 2


@pytest.mark.parametrize(
    'key,value',
    [
        ('local.driver', 'virtualbox'),
        ('local.image.days-to-expire', '0'),
        ('local.image.days-to-expire', 'soon'),
        ('client.verbosity', '9'),
        ('local.lxd.socket', '  '),
    ],
)
def test_config_handler_rejects_invalid(paths, key, value) -> None:
    handler = ConfigSettingsHandler(paths[0])
    with pytest.raises(InvalidSettingValueError):
        handler.set(key, value)
    assert not paths[0].exists()


def test_config_handler_unknown_key(paths) -> None:
    with pytest.raises(UnknownSettingKeyError):
        ConfigSettingsHandler(paths[0]).get('local.dev.cpus')


def test_instance_handler_keys_are_templates(paths) -> None:
    keys = InstanceSettingsHandler(paths[1]).keys()
    assert keys == {
        'local.<instance>.cpus',
        'local.<instance>.memory',
        'local.<instance>.disk',
    }


def test_instance_handler_get(paths) -> None:
    handler = InstanceSettingsHandler(paths[1])
    assert handler.get('local.dev.cpus') == '2'
    assert handler.get('local.dev.memory') == '1GiB'
    assert handler.get('local.dev.disk') == '5GiB'


def test_instance_handler_missing_instance(paths) -> None:
    with pytest.raises(InstanceSettingsError):
        InstanceSettingsHandler(paths[1]).get('local.ghost.cpus')


def test_instance_handler_set(paths) -> None:
    spath = paths[1]
    handler = InstanceSettingsHandler(spath)
    handler.set('local.dev.cpus', '4')
    handler.set('local.dev.memory', '2G')
    handler.set('local.dev.disk', '10G')
    rec = find_instance(load_store(spath), 'dev')
    assert rec.cpus == 4
    assert rec.mem_size == 2 * 1024**3
    assert rec.disk_space == 10 * 1024**3


@pytest.mark.parametrize(
    'key,value',
    [
        ('local.dev.cpus', '0'),
        ('local.dev.memory', '64M'),
        ('local.dev.memory', 'lots'),
        ('local.dev.disk', '1G'),
    ],
)
def test_instance_handler_rejects_invalid(paths, key, value) -> None:
    with pytest.raises(InvalidSettingValueError):
        InstanceSettingsHandler(paths[1]).set(key, value)


def test_instance_handler_requires_stopped(paths) -> None:
    with pytest.raises(InstanceSettingsError):
        InstanceSettingsHandler(paths[1]).set('local.busy.cpus', '2')


def test_registry_routes_to_both_handlers(paths) -> None:
    reg = build_registry(*paths)
    assert 'local.driver' in reg.keys()
    assert 'local.<instance>.cpus' in reg.keys()
    assert reg.get('local.dev.cpus') == '2'
    assert reg.get_as('local.image.days-to-expire', int) == 14
    reg.set('local.bridged-network', 'eth0')
    assert reg.get('local.bridged-network') == 'eth0'
    with pytest.raises(UnknownSettingKeyError):
        reg.get('local.<instance>.cpus')
