"""Tests for image hosts, the downloader, and the filesystem image vault."""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest

from multivm import image_vault as vault_mod
from multivm.errors import ImageVaultError
from multivm.image_vault import (
    CurlDownloader,
    CustomImageHost,
    DefaultImageVault,
    lookup_image_info,
    utcnow,
)
from multivm.models import Query, VMImageInfo
from multivm.util import CmdError, CmdResult


class FakeDownloader:
    def __init__(self):
        self.urls: list[str] = []

    def download_to(self, url: str, path: Path) -> Path:
        self.urls.append(url)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b'qcow2')
        return path


def _vault(tmp_path: Path, downloader=None, days: int = 14) -> DefaultImageVault:
    return DefaultImageVault(
        [CustomImageHost()],
        downloader or FakeDownloader(),
        tmp_path / 'cache',
        tmp_path / 'data',
        days,
    )


def test_custom_image_host_matches_release_and_alias() -> None:
    host = CustomImageHost()
    assert host.info_for(Query('x', 'jammy')).id == 'jammy'
    assert host.info_for(Query('x', '24.04')).id == 'noble'
    assert host.info_for(Query('x', 'noble', remote_name='daily')) is None


def test_lookup_image_info_tries_hosts_in_order() -> None:
    custom = CustomImageHost(
        [VMImageInfo(id='mine', release='noble', image_location='file:///x.img')]
    )
    info = lookup_image_info([custom, CustomImageHost()], Query('x', 'noble'))
    assert info.id == 'mine'
    with pytest.raises(ImageVaultError):
        lookup_image_info([custom], Query('x', 'bionic'))


def test_fetch_downloads_then_hits_cache(tmp_path: Path) -> None:
    dl = FakeDownloader()
    vault = _vault(tmp_path, dl)
    first = vault.fetch(Query('a', 'noble'))
    second = _vault(tmp_path, dl).fetch(Query('b', 'noble'))
    assert len(dl.urls) == 1
    assert first.image_path == second.image_path
    assert Path(first.image_path).name == 'noble-server-cloudimg-amd64.img'
    assert first.original_release == '24.04 LTS'


def test_fetch_redownloads_missing_file(tmp_path: Path) -> None:
    dl = FakeDownloader()
    vault = _vault(tmp_path, dl)
    Path(vault.fetch(Query('a', 'noble')).image_path).unlink()
    vault.fetch(Query('a', 'noble'))
    assert len(dl.urls) == 2


def test_fetch_redownloads_stale_image(tmp_path: Path, monkeypatch) -> None:
    dl = FakeDownloader()
    vault = _vault(tmp_path, dl, days=1)
    vault.fetch(Query('a', 'noble'))
    later = utcnow() + timedelta(days=3)
    monkeypatch.setattr(vault_mod, 'utcnow', lambda: later)
    vault.fetch(Query('a', 'noble'))
    assert len(dl.urls) == 2


def test_prune_expired(tmp_path: Path, monkeypatch) -> None:
    vault = _vault(tmp_path, days=2)
    noble = vault.fetch(Query('a', 'noble'))
    later = utcnow() + timedelta(days=3)
    monkeypatch.setattr(vault_mod, 'utcnow', lambda: later)
    jammy = vault.fetch(Query('a', 'jammy'))
    assert vault.prune_expired() == [':noble']
    assert not Path(noble.image_path).exists()
    assert Path(jammy.image_path).exists()
    assert vault.prune_expired() == []


def test_fetch_lock_is_per_key(tmp_path: Path) -> None:
    vault = _vault(tmp_path)
    entered = threading.Event()

    def other():
        with vault.fetch_lock('k2'):
            entered.set()

    with vault.fetch_lock('k1'):
        t = threading.Thread(target=other)
        t.start()
        t.join(timeout=5)
    assert entered.is_set()


class SlowDownloader(FakeDownloader):
    """Records how many downloads overlap."""

    def __init__(self):
        super().__init__()
        self._guard = threading.Lock()
        self.active = 0
        self.max_active = 0

    def download_to(self, url: str, path: Path) -> Path:
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.2)
        try:
            return super().download_to(url, path)
        finally:
            with self._guard:
                self.active -= 1


def test_fetch_serializes_aliases_of_one_image(tmp_path: Path) -> None:
    dl = SlowDownloader()
    vault = _vault(tmp_path, dl)
    results = {}

    def fetch(release):
        results[release] = vault.fetch(Query('a', release))

    threads = [threading.Thread(target=fetch, args=(r,)) for r in ('noble', 'lts')]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert dl.max_active == 1
    assert len(dl.urls) == 1
    assert results['noble'].image_path == results['lts'].image_path


def test_fetch_alias_hits_cache_of_release(tmp_path: Path) -> None:
    dl = FakeDownloader()
    vault = _vault(tmp_path, dl)
    vault.fetch(Query('a', '24.04'))
    vault.fetch(Query('a', 'noble'))
    assert len(dl.urls) == 1
    assert vault.prune_expired() == []


def test_curl_downloader_cleans_partial_file(tmp_path: Path, monkeypatch) -> None:
    def fake_run_cmd(cmd, **kwargs):
        Path(cmd[cmd.index('-o') + 1]).write_text('partial')
        raise CmdError(cmd, CmdResult(22, '', '404'))

    monkeypatch.setattr('multivm.image_vault.run_cmd', fake_run_cmd)
    target = tmp_path / 'img' / 'x.img'
    with pytest.raises(CmdError):
        CurlDownloader().download_to('https://example.invalid/x.img', target)
    assert list(target.parent.iterdir()) == []


def test_curl_downloader_moves_into_place(tmp_path: Path, monkeypatch) -> None:
    def fake_run_cmd(cmd, **kwargs):
        Path(cmd[cmd.index('-o') + 1]).write_text('data')
        return CmdResult(0, '', '')

    monkeypatch.setattr('multivm.image_vault.run_cmd', fake_run_cmd)
    target = tmp_path / 'x.img'
    assert CurlDownloader().download_to('https://example.invalid/x.img', target) == target
    assert target.read_text() == 'data'
