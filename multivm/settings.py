"""Settings registry: a chain of handlers behind one typed key/value store.

Handlers are queried in registration order. A handler that does not own a key
raises :class:`UnknownSettingKeyError`, which moves the lookup on to the next
handler. Keys may be literal (``local.driver``) or templates meant for display
only (``local.<instance>.cpus``); templates cannot be used in get/set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, TypeVar

from loguru import logger

from .errors import UnknownSettingKeyError, UnsupportedValueTypeError

log = logger

T = TypeVar('T')

_TRUTHY = {'true', 'on', 'yes', '1'}
_FALSY = {'false', 'off', 'no', '0', ''}


def _to_bool(text: str) -> bool:
    low = text.strip().lower()
    if low in _TRUTHY:
        return True
    if low in _FALSY:
        return False
    raise ValueError(f'not a boolean: {text!r}')


_CONVERSIONS: dict[type, Callable[[str], Any]] = {
    str: str,
    int: lambda s: int(s.strip()),
    float: lambda s: float(s.strip()),
    bool: _to_bool,
}


def register_conversion(type_: type[T], convert: Callable[[str], T]) -> None:
    """Make ``type_`` available to :meth:`SettingsRegistry.get_as`.

    ``convert`` must raise ``ValueError`` on malformed input and ``type_()``
    must produce the default used for malformed values.
    """
    _CONVERSIONS[type_] = convert


class SettingsHandler(ABC):
    """Owner of a slice of the settings key space."""

    @abstractmethod
    def keys(self) -> set[str]:
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the value for ``key`` or raise ``UnknownSettingKeyError``."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` or raise ``UnknownSettingKeyError`` / ``InvalidSettingValueError``."""
        raise NotImplementedError


class SettingsRegistry:
    """Ordered chain of :class:`SettingsHandler` objects.

    Register handlers once at startup, before any concurrent access. When two
    handlers claim the same key the first registered one wins.
    """

    def __init__(self, handlers: list[SettingsHandler] | None = None):
        self.handlers: list[SettingsHandler] = list(handlers or [])

    def register_handler(self, handler: SettingsHandler) -> None:
        self.handlers.append(handler)

    def keys(self) -> set[str]:
        ret: set[str] = set()
        for handler in self.handlers:
            ret |= handler.keys()
        return ret

    def get(self, key: str) -> str:
        for handler in self.handlers:
            try:
                return handler.get(key)
            except UnknownSettingKeyError:
                continue
        raise UnknownSettingKeyError(key)

    def set(self, key: str, value: str) -> None:
        for handler in self.handlers:
            try:
                handler.set(key, value)
                log.debug('Setting updated: {}={}', key, value)
                return
            except UnknownSettingKeyError:
                continue
        raise UnknownSettingKeyError(key)

    def get_as(self, key: str, type_: type[T]) -> T:
        """Obtain a setting converted to ``type_``.

        Raises ``UnsupportedValueTypeError`` only when ``type_`` itself has no
        conversion. A value that fails to convert yields ``type_()``.
        """
        convert = _CONVERSIONS.get(type_)
        text = self.get(key)
        if convert is None:
            raise UnsupportedValueTypeError(key, type_)
        try:
            return convert(text)
        except (TypeError, ValueError):
            log.debug(
                'Setting {}={!r} does not convert to {}; using default',
                key,
                text,
                type_.__name__,
            )
            return type_()


def build_registry(config_path: Path | None = None, store_path: Path | None = None) -> SettingsRegistry:
    """Construct the process-wide registry with the shipped handlers."""
    from .settings_handlers import ConfigSettingsHandler, InstanceSettingsHandler

    registry = SettingsRegistry()
    registry.register_handler(ConfigSettingsHandler(config_path))
    registry.register_handler(InstanceSettingsHandler(store_path))
    return registry
