"""Project-specific exception types, each tagged with an explicit error kind."""

from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    UNKNOWN_KEY = 'unknown-key'
    INVALID_SETTING_VALUE = 'invalid-setting-value'
    UNSUPPORTED_VALUE_TYPE = 'unsupported-value-type'
    BACKEND_UNREACHABLE = 'backend-unreachable'
    AUTHENTICATION_FAILED = 'authentication-failed'
    NOT_FOUND = 'not-found'
    REMOTE_ERROR = 'remote-error'
    COMMAND_FAILED = 'command-failed'
    NOT_IMPLEMENTED = 'not-implemented'


class MultiVMError(RuntimeError):
    """Base error for domain-level multivm failures.

    Callers branch on ``kind`` rather than on the concrete class.
    """

    kind: ErrorKind = ErrorKind.REMOTE_ERROR


class SettingsError(MultiVMError):
    """Base error for settings lookups and updates."""

    kind = ErrorKind.INVALID_SETTING_VALUE


class UnknownSettingKeyError(SettingsError):
    """Raised when no settings handler recognizes a key."""

    kind = ErrorKind.UNKNOWN_KEY

    def __init__(self, key: str):
        self.key = key
        super().__init__(f'Unrecognized settings key: "{key}"')


class InvalidSettingValueError(SettingsError):
    """Raised when a recognized key is given a value that fails validation."""

    kind = ErrorKind.INVALID_SETTING_VALUE

    def __init__(self, key: str, value: str, why: str):
        self.key = key
        self.value = value
        super().__init__(f'Invalid setting: {key}={value} ({why})')


class UnsupportedValueTypeError(SettingsError):
    """Raised when a setting is requested as a type with no conversion path."""

    kind = ErrorKind.UNSUPPORTED_VALUE_TYPE

    def __init__(self, key: str, type_: type):
        self.key = key
        self.type_ = type_
        super().__init__(
            f'Invalid conversion of setting "{key}" to {type_.__name__}'
        )


class InstanceSettingsError(SettingsError):
    """Raised when an instance setting cannot be read or changed."""

    def __init__(self, reason: str, instance: str, detail: str):
        self.instance = instance
        super().__init__(f'Cannot {reason} for instance "{instance}": {detail}')


class BackendError(MultiVMError):
    """A backend call failed (permission, malformed request, remote error)."""

    kind = ErrorKind.REMOTE_ERROR


class BackendUnreachableError(BackendError):
    """The transport could not reach the backend at all."""

    kind = ErrorKind.BACKEND_UNREACHABLE


class AuthenticationError(BackendError):
    """The backend is reachable but does not trust us."""

    kind = ErrorKind.AUTHENTICATION_FAILED


class NotFoundError(BackendError):
    """The requested backend resource does not exist."""

    kind = ErrorKind.NOT_FOUND


class NotImplementedOnBackendError(MultiVMError):
    kind = ErrorKind.NOT_IMPLEMENTED

    def __init__(self, feature: str):
        super().__init__(f'{feature} is not implemented on this backend.')


class ImageVaultError(MultiVMError):
    """Raised when an image cannot be resolved or materialized."""

    kind = ErrorKind.NOT_FOUND
