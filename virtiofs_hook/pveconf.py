"""Read/modify/write access to Proxmox VE QEMU guest configuration files.

Only the current (top) section of ``/etc/pve/qemu-server/<vmid>.conf`` is
edited. Comment lines, unrelated keys, and the ``[snapshot]`` / ``[PENDING]``
sections that follow are written back untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .errors import VMConfigError

log = logger

DEFAULT_PVE_CONFIG_DIR = '/etc/pve/qemu-server'
# Proxmox uses 512 MiB when ``memory`` is not set.
DEFAULT_MEMORY_MB = 512

_KEY_RE = re.compile(r'^([a-z][a-z0-9_-]*):\s?(.*)$', re.IGNORECASE)


@dataclass
class VMConfig:
    vmid: str
    lines: list[str] = field(default_factory=list)
    tail: str = ''

    @classmethod
    def parse(cls, vmid: str, text: str) -> 'VMConfig':
        lines = text.splitlines()
        for idx, line in enumerate(lines):
            if line.startswith('['):
                head, rest = lines[:idx], lines[idx:]
                return cls(vmid, head, '\n'.join(rest) + '\n')
        return cls(vmid, lines, '')

    def dumps(self) -> str:
        head = list(self.lines)
        while head and not head[-1].strip():
            head.pop()
        text = '\n'.join(head) + '\n' if head else ''
        if self.tail:
            text += '\n' + self.tail
        return text

    def _find(self, key: str) -> int | None:
        for idx, line in enumerate(self.lines):
            m = _KEY_RE.match(line)
            if m and m.group(1) == key:
                return idx
        return None

    def get(self, key: str) -> str | None:
        idx = self._find(key)
        if idx is None:
            return None
        return _KEY_RE.match(self.lines[idx]).group(2)

    def set(self, key: str, value: str) -> None:
        line = f'{key}: {value}'
        idx = self._find(key)
        if idx is None:
            end = len(self.lines)
            while end and not self.lines[end - 1].strip():
                end -= 1
            self.lines.insert(end, line)
        else:
            self.lines[idx] = line

    def unset(self, key: str) -> None:
        idx = self._find(key)
        if idx is not None:
            del self.lines[idx]

    @property
    def args(self) -> str | None:
        return self.get('args')

    @args.setter
    def args(self, value: str | None) -> None:
        if value is None:
            self.unset('args')
        else:
            self.set('args', value)

    @property
    def memory_mb(self) -> int:
        raw = self.get('memory')
        if raw is None or not raw.strip():
            return DEFAULT_MEMORY_MB
        # Newer releases allow a property string such as ``current=2048``.
        for item in raw.split(','):
            key, sep, val = item.strip().partition('=')
            text = val if sep else key
            if not sep or key == 'current':
                try:
                    return int(text)
                except ValueError as ex:
                    raise VMConfigError(
                        f'VM {self.vmid} has an invalid memory value: {raw!r}'
                    ) from ex
        return DEFAULT_MEMORY_MB


class PveConfigStore:
    """Load and write guest configs by vmid."""

    def __init__(self, config_dir: str | Path = DEFAULT_PVE_CONFIG_DIR) -> None:
        self.config_dir = Path(config_dir)

    def path_for(self, vmid: str) -> Path:
        return self.config_dir / f'{vmid}.conf'

    def load(self, vmid: str) -> VMConfig:
        fpath = self.path_for(vmid)
        try:
            text = fpath.read_text(encoding='utf-8')
        except OSError as ex:
            raise VMConfigError(
                f'Failed to load config of VM {vmid}: {ex}'
            ) from ex
        return VMConfig.parse(str(vmid), text)

    def write(self, vmid: str, conf: VMConfig) -> None:
        fpath = self.path_for(vmid)
        try:
            fpath.write_text(conf.dumps(), encoding='utf-8')
        except OSError as ex:
            raise VMConfigError(
                f'Failed to write config of VM {vmid}: {ex}'
            ) from ex
        log.debug('Wrote config of VM {} to {}', vmid, fpath)
