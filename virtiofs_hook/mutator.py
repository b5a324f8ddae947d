"""Idempotent injection and retraction of generated ``args`` in a VM config."""

from __future__ import annotations

import re

from loguru import logger

from .handoff import PendingArgsStore
from .pveconf import PveConfigStore

log = logger


def inject_args(current: str | None, generated: str) -> str | None:
    if current is None or not current.strip():
        return generated
    if generated in current:
        return current
    return f'{current} {generated}'


def retract_args(current: str | None, fragment: str) -> str | None:
    """Remove ``fragment`` and the whitespace before it; '' becomes None."""
    if current is None or not fragment:
        return current
    out = re.sub(r'\s*' + re.escape(fragment), '', current)
    if not out.strip():
        return None
    return out


class ConfigMutator:
    def __init__(
        self, vm_configs: PveConfigStore, handoff: PendingArgsStore
    ) -> None:
        self.vm_configs = vm_configs
        self.handoff = handoff

    def inject(self, vmid: str, generated: str) -> bool:
        """Hand off ``generated`` and append it to the VM args if missing.

        Returns True when the VM config was rewritten.
        """
        self.handoff.put(vmid, generated)
        conf = self.vm_configs.load(vmid)
        current = conf.args
        updated = inject_args(current, generated)
        if updated == current:
            log.info('VM args already contain the virtiofs arguments.')
            return False
        if current is None or not current.strip():
            log.info('Setting VM args to generated virtiofs arguments.')
        else:
            log.info('Appending virtiofs arguments to existing VM args.')
        conf.args = updated
        log.debug('VM arguments: {}', conf.args)
        self.vm_configs.write(vmid, conf)
        return True

    def retract(self, vmid: str) -> bool:
        """Consume the hand-off file and strip its fragment from the VM args.

        Returns True when the VM config was rewritten.
        """
        fragment = self.handoff.take(vmid)
        if not fragment:
            log.info('No pending virtiofs arguments for VM {}.', vmid)
            return False
        conf = self.vm_configs.load(vmid)
        current = conf.args
        if current is None or fragment not in current:
            log.info('VM args do not contain the virtiofs arguments.')
            return False
        log.info('Removing virtiofs arguments from VM args.')
        log.debug('conf.args = {}', current)
        log.debug('vfs_args = {}', fragment)
        conf.args = retract_args(current, fragment)
        log.debug('conf.args = {}', conf.args)
        self.vm_configs.write(vmid, conf)
        return True
