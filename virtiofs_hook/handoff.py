"""Hand-off of generated launch arguments from pre-start to post-start.

The two phases run as separate processes, so the value travels through one
small file per VM. Contract: ``pre-start`` is the only writer, ``post-start``
the only reader, and reading consumes the file.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from .util import ensure_dir

log = logger

HANDOFF_SUFFIX = '.virtfs'


class PendingArgsStore:
    def __init__(self, root: str | Path = '/run') -> None:
        self.root = Path(root)

    def path_for(self, vmid: str) -> Path:
        return self.root / f'{vmid}{HANDOFF_SUFFIX}'

    def put(self, vmid: str, value: str) -> Path:
        fpath = self.path_for(vmid)
        ensure_dir(fpath.parent)
        fpath.write_text(value, encoding='utf-8')
        log.debug('Wrote pending args for VM {} to {}', vmid, fpath)
        return fpath

    def take(self, vmid: str) -> str | None:
        """Read and delete the pending value, or None when there is none."""
        fpath = self.path_for(vmid)
        try:
            value = fpath.read_text(encoding='utf-8')
        except FileNotFoundError:
            log.debug('No pending args for VM {} at {}', vmid, fpath)
            return None
        try:
            fpath.unlink()
        except OSError as ex:
            log.warning('Could not delete {}: {}', fpath, ex)
        return value

    def discard(self, vmid: str) -> None:
        """Drop a pending value left by a pre-start that did not complete."""
        fpath = self.path_for(vmid)
        try:
            fpath.unlink()
        except FileNotFoundError:
            return
        except OSError as ex:
            log.warning('Could not delete {}: {}', fpath, ex)
            return
        log.debug('Discarded pending args for VM {} at {}', vmid, fpath)
