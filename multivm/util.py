"""Shared utility helpers for subprocess execution, paths, and size parsing."""

from __future__ import annotations

import os
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from .errors import ErrorKind, MultiVMError

log = logger

_SIZE_UNITS = {
    '': 1,
    'B': 1,
    'K': 1024,
    'KB': 1024,
    'KIB': 1024,
    'M': 1024**2,
    'MB': 1024**2,
    'MIB': 1024**2,
    'G': 1024**3,
    'GB': 1024**3,
    'GIB': 1024**3,
    'T': 1024**4,
    'TB': 1024**4,
    'TIB': 1024**4,
}
_SIZE_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$')


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str


class CmdError(MultiVMError):
    kind = ErrorKind.COMMAND_FAILED

    def __init__(self, cmd: Sequence[str] | str, result: CmdResult):
        self.cmd = cmd
        self.result = result
        super().__init__(
            f'Command failed (code={result.code}): {cmd}\n{result.stderr}'.strip()
        )


def shell_join(cmd: Sequence[str]) -> str:
    return ' '.join(shlex.quote(c) for c in cmd)


def run_cmd(
    cmd: Sequence[str],
    *,
    sudo: bool = False,
    check: bool = True,
    capture: bool = True,
    text: bool = True,
    input_text: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
) -> CmdResult:
    original_cmd = cmd
    if sudo and os.geteuid() != 0:
        # Non-interactive sudo: fail fast if password/TTY is required.
        cmd = ['sudo', '-n', *cmd]
        log.opt(depth=1).debug(
            'Running with sudo: {}', shell_join(original_cmd)
        )
    log.opt(depth=1).debug('RUN: {}', shell_join(cmd))
    p = subprocess.run(
        cmd,
        input=input_text if input_text is not None else None,
        capture_output=capture,
        text=text,
        env=env,
    )
    res = CmdResult(p.returncode, p.stdout or '', p.stderr or '')
    if check and p.returncode != 0:
        log.opt(depth=1).error(
            'Command failed code={} cmd={} stderr={} stdout={}',
            p.returncode,
            shell_join(cmd),
            res.stderr.strip(),
            res.stdout.strip(),
        )
        raise CmdError(cmd, res)
    if p.returncode == 0:
        log.opt(depth=1).debug('Command ok code=0 cmd={}', shell_join(cmd))
    return res


def which(cmd: str) -> Optional[str]:
    from shutil import which as _which

    return _which(cmd)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def parse_size(text: str) -> int:
    """Parse a human size such as ``5G``, ``512MiB`` or ``1073741824`` into bytes.

    Raises:
        ValueError: if the text is not a size.
    """
    match = _SIZE_RE.match(str(text))
    if match is None:
        raise ValueError(f'not a size: {text!r}')
    number, unit = match.groups()
    factor = _SIZE_UNITS.get(unit.upper())
    if factor is None:
        raise ValueError(f'unknown size unit {unit!r} in {text!r}')
    return int(float(number) * factor)


def format_size(num_bytes: int) -> str:
    for unit, factor in (('TiB', 1024**4), ('GiB', 1024**3), ('MiB', 1024**2), ('KiB', 1024)):
        if num_bytes >= factor:
            value = num_bytes / factor
            if value == int(value):
                return f'{int(value)}{unit}'
            return f'{value:.1f}{unit}'
    return f'{num_bytes}B'


def generate_mac() -> str:
    """Random locally administered MAC in the QEMU/KVM ``52:54:00`` range."""
    import random

    tail = ':'.join(f'{random.randint(0, 255):02x}' for _ in range(3))
    return f'52:54:00:{tail}'
