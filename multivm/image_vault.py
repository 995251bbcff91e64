"""Image vault contract, image hosts, downloader, and the filesystem vault."""

from __future__ import annotations

import threading
import tomllib
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Sequence

from loguru import logger

from .errors import ImageVaultError
from .models import Query, VMImage, VMImageInfo
from .util import CmdError, ensure_dir, run_cmd

log = logger

UBUNTU_RELEASES_STREAM = 'https://cloud-images.ubuntu.com/releases'

DEFAULT_IMAGES = [
    VMImageInfo(
        id='noble',
        release='noble',
        release_title='24.04 LTS',
        aliases=['24.04', 'lts'],
        image_location='https://cloud-images.ubuntu.com/noble/current/noble-server-cloudimg-amd64.img',
        stream_location=UBUNTU_RELEASES_STREAM,
    ),
    VMImageInfo(
        id='jammy',
        release='jammy',
        release_title='22.04 LTS',
        aliases=['22.04'],
        image_location='https://cloud-images.ubuntu.com/jammy/current/jammy-server-cloudimg-amd64.img',
        stream_location=UBUNTU_RELEASES_STREAM,
    ),
]


class CustomImageHost:
    """Static catalog of downloadable images keyed by release or alias."""

    def __init__(self, images: Sequence[VMImageInfo] = tuple(DEFAULT_IMAGES), remote_name: str = ''):
        self.images = list(images)
        self.remote_name = remote_name

    def info_for(self, query: Query) -> VMImageInfo | None:
        if query.remote_name != self.remote_name:
            return None
        for info in self.images:
            if query.release == info.release or query.release in info.aliases:
                return info
        return None


class CurlDownloader:
    """Materializes image bytes at a local path."""

    def download_to(self, url: str, path: Path) -> Path:
        ensure_dir(path.parent)
        tmp = Path(str(path) + '.part')
        tmp.unlink(missing_ok=True)
        log.info('Downloading {} to {}', url, path)
        try:
            run_cmd(
                ['curl', '-L', '--fail', '--silent', '--show-error', '-o', str(tmp), url],
                check=True,
                capture=True,
            )
        except CmdError:
            tmp.unlink(missing_ok=True)
            raise
        tmp.replace(path)
        return path


def lookup_image_info(image_hosts: Sequence, query: Query) -> VMImageInfo:
    for host in image_hosts:
        info = host.info_for(query)
        if info is not None:
            return info
    raise ImageVaultError(
        f'Unable to find an image matching "{query.release}" '
        f'(remote "{query.remote_name or "default"}")'
    )


def image_key(query: Query, info: VMImageInfo) -> str:
    """Vault key for a resolved image. Aliases of one image share a key."""
    return f'{query.remote_name}:{info.id}'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageVault(ABC):
    """Cache mapping an image query to a usable image, with time-based expiry.

    Subclasses must wrap each fetch in :meth:`fetch_lock`, keyed by
    :func:`image_key`, so that at most one fetch per image runs at a time.
    """

    def __init__(self, image_hosts: Sequence, days_to_expire: int):
        self.image_hosts = list(image_hosts)
        self.days_to_expire = int(days_to_expire)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def fetch_lock(self, key: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def is_expired(self, stamp: datetime, *, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return now - stamp > timedelta(days=self.days_to_expire)

    @abstractmethod
    def fetch(self, query: Query) -> VMImage:
        raise NotImplementedError

    @abstractmethod
    def prune_expired(self) -> list[str]:
        """Evict entries unused for longer than the horizon; return their keys."""
        raise NotImplementedError


@dataclass
class VaultRecord:
    key: str
    image: VMImage
    fetched_at: datetime
    last_used: datetime


class DefaultImageVault(ImageVault):
    """Filesystem vault: images under ``cache_dir/images``, records in TOML."""

    def __init__(
        self,
        image_hosts: Sequence,
        downloader: CurlDownloader,
        cache_dir: Path,
        data_dir: Path,
        days_to_expire: int,
    ):
        super().__init__(image_hosts, days_to_expire)
        self.downloader = downloader
        self.cache_dir = Path(cache_dir)
        self.data_dir = Path(data_dir)
        self.images_dir = self.cache_dir / 'images'
        self.records_path = self.cache_dir / 'image-records.toml'
        self._records_guard = threading.Lock()

    def fetch(self, query: Query) -> VMImage:
        info = lookup_image_info(self.image_hosts, query)
        key = image_key(query, info)
        with self.fetch_lock(key):
            now = utcnow()
            rec = self._load_records().get(key)
            if (
                rec is not None
                and Path(rec.image.image_path).exists()
                and not self.is_expired(rec.fetched_at, now=now)
            ):
                log.debug('Image cache hit for {}: {}', key, rec.image.image_path)
                rec.last_used = now
                self._put_record(rec)
                return rec.image
            if rec is not None:
                log.info('Cached image for {} is stale or missing; refetching', key)

            fname = Path(info.image_location).name or f'{info.id}.img'
            path = self.images_dir / info.id / fname
            self.downloader.download_to(info.image_location, path)
            image = VMImage(
                id=info.id,
                image_path=str(path),
                original_release=info.release_title or info.release,
                release_date=now.strftime('%Y%m%d'),
                aliases=list(info.aliases),
            )
            self._put_record(VaultRecord(key, image, fetched_at=now, last_used=now))
            return image

    def prune_expired(self) -> list[str]:
        now = utcnow()
        with self._records_guard:
            records = self._load_records()
            expired = [k for k, r in records.items() if self.is_expired(r.last_used, now=now)]
            for key in expired:
                path = Path(records[key].image.image_path)
                log.info('Evicting expired image {} ({})', key, path)
                path.unlink(missing_ok=True)
                del records[key]
            self._save_records(records)
        return expired

    def _put_record(self, rec: VaultRecord) -> None:
        with self._records_guard:
            records = self._load_records()
            records[rec.key] = rec
            self._save_records(records)

    def _load_records(self) -> dict[str, VaultRecord]:
        if not self.records_path.exists():
            return {}
        raw = tomllib.loads(self.records_path.read_text(encoding='utf-8'))
        ret: dict[str, VaultRecord] = {}
        for item in raw.get('records', []):
            if not isinstance(item, dict) or not item.get('key'):
                continue
            image = VMImage(
                id=str(item.get('id', '')),
                image_path=str(item.get('image_path', '')),
                original_release=str(item.get('original_release', '')),
                release_date=str(item.get('release_date', '')),
                aliases=[str(a) for a in item.get('aliases', [])],
            )
            ret[item['key']] = VaultRecord(
                key=item['key'],
                image=image,
                fetched_at=datetime.fromisoformat(item['fetched_at']),
                last_used=datetime.fromisoformat(item['last_used']),
            )
        return ret

    def _save_records(self, records: dict[str, VaultRecord]) -> None:
        ensure_dir(self.cache_dir)
        lines: list[str] = []
        for key in sorted(records):
            rec = records[key]
            aliases = ', '.join(f'"{_toml_escape(a)}"' for a in rec.image.aliases)
            lines.append('[[records]]')
            lines.append(f'key = "{_toml_escape(key)}"')
            lines.append(f'id = "{_toml_escape(rec.image.id)}"')
            lines.append(f'image_path = "{_toml_escape(rec.image.image_path)}"')
            lines.append(f'original_release = "{_toml_escape(rec.image.original_release)}"')
            lines.append(f'release_date = "{_toml_escape(rec.image.release_date)}"')
            lines.append(f'aliases = [{aliases}]')
            lines.append(f'fetched_at = "{rec.fetched_at.isoformat()}"')
            lines.append(f'last_used = "{rec.last_used.isoformat()}"')
            lines.append('')
        self.records_path.write_text('\n'.join(lines).rstrip() + '\n', encoding='utf-8')


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')
