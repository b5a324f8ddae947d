"""Share mapping file parsing and per-share systemd unit naming."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .errors import ShareConfigError, ShareMapError

log = logger

DEFAULT_UNIT_DIR = '/etc/systemd/system'
UNIT_PREFIX = 'virtiofsd'

_SHARE_ID_RE = re.compile(r'.*/([^/]+)')


@dataclass(frozen=True)
class UnitDescriptor:
    vmid: str
    share_path: str
    share_id: str
    unit_name: str
    unit_file_path: str

    @property
    def instance_name(self) -> str:
        """Name of the template instance bound to this VM."""
        return f'{self.unit_name}@{self.vmid}.service'

    @property
    def tag(self) -> str:
        return f'{self.vmid}-{self.share_id}'


def share_id_for(path: str) -> str:
    # Trailing slashes are skipped; a path without any separator yields ''.
    m = _SHARE_ID_RE.match(path)
    return m.group(1) if m else ''


def derive_unit_descriptor(
    vmid: str, path: str, unit_dir: str = DEFAULT_UNIT_DIR
) -> UnitDescriptor:
    share_id = share_id_for(path)
    unit_name = f'{UNIT_PREFIX}-{vmid}-{share_id}'
    unit_file = Path(unit_dir) / f'{unit_name}@.service'
    return UnitDescriptor(
        vmid=str(vmid),
        share_path=path,
        share_id=share_id,
        unit_name=unit_name,
        unit_file_path=str(unit_file),
    )


@dataclass
class ShareRegistry:
    """Mapping of VM id to its ordered share paths for one invocation."""

    shares: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: str) -> 'ShareRegistry':
        reg = cls()
        for lineno, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if ':' not in line:
                log.warning(
                    'Ignoring share map line {} without a vmid: {!r}',
                    lineno,
                    raw_line,
                )
                continue
            vmid, paths_str = line.split(':', 1)
            vmid = vmid.strip()
            if not vmid:
                log.warning('Ignoring share map line {} with empty vmid', lineno)
                continue
            paths = [p.strip() for p in paths_str.split(',') if p.strip()]
            if vmid in reg.shares:
                log.warning(
                    'Share map line {} redefines vmid {}; the later line wins',
                    lineno,
                    vmid,
                )
            reg.shares[vmid] = paths
        return reg

    @classmethod
    def load(cls, path: str | Path) -> 'ShareRegistry':
        fpath = Path(path)
        try:
            text = fpath.read_text(encoding='utf-8')
        except OSError as ex:
            raise ShareMapError(f'Failed to open {fpath}: {ex}') from ex
        reg = cls.parse(text)
        log.debug('Loaded share map {} with {} VM(s)', fpath, len(reg.shares))
        return reg

    def paths_for(self, vmid: str) -> list[str]:
        return list(self.shares.get(str(vmid), []))

    def descriptors_for(
        self, vmid: str, unit_dir: str = DEFAULT_UNIT_DIR
    ) -> list[UnitDescriptor]:
        return [
            derive_unit_descriptor(str(vmid), p, unit_dir)
            for p in self.paths_for(vmid)
        ]

    def validate(self, vmid: str) -> None:
        """Reject share lists whose final path segments would alias units."""
        counts = Counter(share_id_for(p) for p in self.paths_for(vmid))
        dupes = sorted(sid for sid, n in counts.items() if n > 1)
        if dupes:
            raise ShareConfigError(
                f'VM {vmid} has shares with the same final path segment '
                f'({", ".join(repr(d) for d in dupes)}); rename one of the '
                'directories so every share maps to its own unit.'
            )
