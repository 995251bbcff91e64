"""Image vault that keeps images inside the LXD image store."""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Sequence

from loguru import logger

from ...errors import BackendError, ErrorKind
from ...image_vault import ImageVault, image_key, lookup_image_info, utcnow
from ...models import Query, VMImage
from .client import LXDClient

log = logger

ALIAS_PREFIX = 'multivm-'
_FRACTION_RE = re.compile(r'(\.\d{6})\d+')


def _parse_lxd_time(text: str) -> datetime | None:
    if not text:
        return None
    try:
        # LXD emits nanoseconds; datetime keeps microseconds
        text = _FRACTION_RE.sub(r'\1', text.replace('Z', '+00:00'))
        stamp = datetime.fromisoformat(text)
    except ValueError:
        return None
    # LXD reports never-used as the zero time
    if stamp.year <= 1:
        return None
    return stamp


class LXDImageVault(ImageVault):
    def __init__(
        self,
        image_hosts: Sequence,
        client: LXDClient,
        base_url: str,
        cache_dir: Path,
        days_to_expire: int,
        *,
        project: str,
    ):
        super().__init__(image_hosts, days_to_expire)
        self.client = client
        self.base_url = base_url
        self.cache_dir = Path(cache_dir)
        self.project = project

    def _get_image(self, alias: str) -> dict | None:
        try:
            reply = self.client.request(
                'GET', f'{self.base_url}/images/aliases/{alias}?project={self.project}'
            )
        except BackendError as ex:
            if ex.kind is ErrorKind.NOT_FOUND:
                return None
            raise
        fingerprint = (reply.get('metadata') or {}).get('target', '')
        image = self.client.request(
            'GET', f'{self.base_url}/images/{fingerprint}?project={self.project}'
        )
        return image.get('metadata') or {}

    def _delete_image(self, fingerprint: str) -> None:
        reply = self.client.request(
            'DELETE', f'{self.base_url}/images/{fingerprint}?project={self.project}'
        )
        self.client.wait(reply)

    def fetch(self, query: Query) -> VMImage:
        info = lookup_image_info(self.image_hosts, query)
        alias = f'{ALIAS_PREFIX}{info.id}'
        with self.fetch_lock(image_key(query, info)):
            image = self._get_image(alias)
            if image is not None:
                uploaded = _parse_lxd_time(image.get('uploaded_at', ''))
                if uploaded is not None and self.is_expired(uploaded):
                    log.info('LXD image {} is stale; refreshing', alias)
                    self._delete_image(image['fingerprint'])
                    image = None
            if image is None:
                log.info('Pulling image {} from {}', info.release, info.stream_location)
                payload = {
                    'source': {
                        'type': 'image',
                        'mode': 'pull',
                        'server': info.stream_location,
                        'protocol': 'simplestreams',
                        'alias': info.release,
                    },
                    'aliases': [{'name': alias}],
                }
                reply = self.client.request(
                    'POST', f'{self.base_url}/images?project={self.project}', payload
                )
                self.client.wait(reply)
                image = self._get_image(alias) or {}
            props = image.get('properties') or {}
            return VMImage(
                id=image.get('fingerprint', ''),
                image_path='',
                original_release=info.release_title or info.release,
                release_date=props.get('serial', ''),
                aliases=list(info.aliases),
            )

    def prune_expired(self) -> list[str]:
        reply = self.client.request(
            'GET', f'{self.base_url}/images?recursion=1&project={self.project}'
        )
        now = utcnow()
        pruned: list[str] = []
        for image in reply.get('metadata') or []:
            aliases = [a.get('name', '') for a in image.get('aliases') or []]
            if not any(a.startswith(ALIAS_PREFIX) for a in aliases):
                continue
            last_used = _parse_lxd_time(image.get('last_used_at', '')) or _parse_lxd_time(
                image.get('uploaded_at', '')
            )
            if last_used is not None and self.is_expired(last_used, now=now):
                log.info('Evicting expired LXD image {}', image['fingerprint'])
                self._delete_image(image['fingerprint'])
                pruned.append(image['fingerprint'])
        return pruned
