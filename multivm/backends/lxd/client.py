"""JSON-over-HTTP client for the LXD REST API on its Unix-domain socket."""

from __future__ import annotations

import socket
import threading
from typing import Any, Optional

import requests
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection
from urllib3.connectionpool import HTTPConnectionPool

from ...config import DEFAULT_LXD_SOCKET, DEFAULT_LXD_URL
from ...errors import BackendError, BackendUnreachableError, NotFoundError

log = logger


class UnixHTTPConnection(HTTPConnection):
    def __init__(self, socket_path: str, timeout: Any = None, **kwargs):
        super().__init__('localhost', **kwargs)
        self.socket_path = socket_path
        self._unix_timeout = timeout if isinstance(timeout, (int, float)) else None

    def _new_conn(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self._unix_timeout)
        try:
            sock.connect(self.socket_path)
        except OSError:
            sock.close()
            raise
        return sock


class UnixHTTPConnectionPool(HTTPConnectionPool):
    def __init__(self, socket_path: str, timeout: float):
        super().__init__('localhost', timeout=timeout)
        self.socket_path = socket_path
        self.unix_timeout = timeout

    def _new_conn(self) -> UnixHTTPConnection:
        return UnixHTTPConnection(self.socket_path, timeout=self.unix_timeout)


class UnixSocketAdapter(HTTPAdapter):
    """Routes every request of a mounted prefix through one Unix socket."""

    def __init__(self, socket_path: str, timeout: float = 30, **kwargs):
        self.socket_path = socket_path
        self.timeout = timeout
        self._pool: Optional[UnixHTTPConnectionPool] = None
        self._pool_guard = threading.Lock()
        super().__init__(**kwargs)

    def _get_pool(self) -> UnixHTTPConnectionPool:
        with self._pool_guard:
            if self._pool is None:
                self._pool = UnixHTTPConnectionPool(self.socket_path, self.timeout)
            return self._pool

    def get_connection_with_tls_context(self, request, verify, proxies=None, cert=None):
        return self._get_pool()

    def get_connection(self, url, proxies=None):
        return self._get_pool()

    def close(self) -> None:
        with self._pool_guard:
            if self._pool is not None:
                self._pool.close()
                self._pool = None
        super().close()


def _origin(url: str) -> str:
    scheme, _, rest = url.partition('://')
    return f'{scheme}://{rest.split("/", 1)[0]}'


class LXDClient:
    """Thread-safe LXD transport.

    Every request is serialized through one lock so the client can be shared
    by concurrent VM operations against the same daemon.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_LXD_URL,
        *,
        socket_path: str = DEFAULT_LXD_SOCKET,
        timeout: float = 30,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.socket_path = socket_path
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            session.mount(_origin(self.base_url), UnixSocketAdapter(socket_path, timeout))
        self.session = session
        self._lock = threading.Lock()

    def request(
        self,
        method: str,
        url: str,
        json_data: dict | None = None,
        *,
        timeout: float | None = None,
    ) -> dict:
        """Issue ``method url`` and return the decoded reply.

        Raises:
            BackendUnreachableError: the socket could not be connected.
            NotFoundError: the daemon answered with error code 404.
            BackendError: any other error reply.
        """
        log.debug('LXD request: {} {}', method, url)
        with self._lock:
            try:
                resp = self.session.request(
                    method, url, json=json_data, timeout=timeout or self.timeout
                )
            except requests.ConnectionError as ex:
                raise BackendUnreachableError(
                    f'Cannot connect to {self.socket_path}: {ex}'
                ) from ex
            except requests.RequestException as ex:
                raise BackendError(f'{method} {url} failed: {ex}') from ex

        try:
            reply = resp.json()
        except ValueError as ex:
            raise BackendError(
                f'{method} {url}: invalid JSON reply (HTTP {resp.status_code})'
            ) from ex
        if not isinstance(reply, dict):
            raise BackendError(f'{method} {url}: unexpected reply {reply!r}')

        error_code = int(reply.get('error_code') or 0)
        if reply.get('type') == 'error' or resp.status_code >= 400:
            message = reply.get('error') or f'HTTP {resp.status_code}'
            if error_code == 404 or resp.status_code == 404:
                raise NotFoundError(f'{method} {url}: {message}')
            raise BackendError(f'{method} {url}: {message}')
        log.trace('LXD reply: {}', reply)
        return reply

    def wait(self, reply: dict, *, timeout: float | None = None) -> dict:
        """Block until an async operation reply completes; sync replies pass through."""
        if reply.get('type') != 'async':
            return reply
        op_path = reply.get('operation') or ''
        op_id = op_path.rstrip('/').rsplit('/', 1)[-1]
        wait_timeout = timeout or self.timeout
        result = self.request(
            'GET',
            f'{self.base_url}/operations/{op_id}/wait?timeout={int(wait_timeout)}',
            timeout=wait_timeout + 5,
        )
        meta = result.get('metadata') or {}
        if meta.get('status_code', 200) >= 400 or meta.get('err'):
            raise BackendError(f'LXD operation {op_id} failed: {meta.get("err")}')
        return result
