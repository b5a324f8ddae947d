"""Dispatch of hypervisor lifecycle phases to unit and config operations."""

from __future__ import annotations

import enum

from loguru import logger

from .args import build_vfs_args
from .config import HookConfig
from .errors import ProvisionError, UnknownPhaseError, VirtiofsHookError
from .handoff import PendingArgsStore
from .mutator import ConfigMutator
from .pveconf import PveConfigStore
from .results import TeardownResult
from .shares import ShareRegistry
from .units import SystemctlUnitController, UnitController, UnitLifecycleManager
from .util import CmdError

log = logger


class Phase(str, enum.Enum):
    PRE_START = 'pre-start'
    POST_START = 'post-start'
    PRE_STOP = 'pre-stop'
    POST_STOP = 'post-stop'


def parse_phase(token: str) -> Phase:
    try:
        return Phase(token)
    except ValueError:
        raise UnknownPhaseError(f"got unknown phase '{token}'") from None


class PhaseController:
    """One hook invocation: apply a single phase transition for one VM."""

    def __init__(
        self,
        registry: ShareRegistry,
        units: UnitLifecycleManager,
        mutator: ConfigMutator,
        vm_configs: PveConfigStore,
        *,
        unit_dir: str = '/etc/systemd/system',
    ) -> None:
        self.registry = registry
        self.units = units
        self.mutator = mutator
        self.vm_configs = vm_configs
        self.unit_dir = unit_dir

    @classmethod
    def from_config(
        cls,
        cfg: HookConfig,
        *,
        controller: UnitController | None = None,
    ) -> 'PhaseController':
        registry = ShareRegistry.load(cfg.paths.share_map)
        vm_configs = PveConfigStore(cfg.paths.pve_config_dir)
        units = UnitLifecycleManager(
            controller or SystemctlUnitController(),
            runtime_dir=cfg.paths.runtime_dir,
            virtiofsd=cfg.virtiofsd,
        )
        mutator = ConfigMutator(
            vm_configs, PendingArgsStore(cfg.paths.handoff_dir)
        )
        return cls(
            registry, units, mutator, vm_configs, unit_dir=cfg.paths.unit_dir
        )

    def run(self, vmid: str, phase: str | Phase) -> None:
        phase = parse_phase(phase.value if isinstance(phase, Phase) else phase)
        handlers = {
            Phase.PRE_START: self.pre_start,
            Phase.POST_START: self.post_start,
            Phase.PRE_STOP: self.pre_stop,
            Phase.POST_STOP: self.post_stop,
        }
        handlers[phase](str(vmid))

    def pre_start(self, vmid: str) -> str | None:
        """Provision every share of ``vmid`` and inject its launch args.

        Returns the generated args, or None when the VM has no shares.
        """
        log.info('{} is starting, doing preparations.', vmid)
        self.registry.validate(vmid)
        descriptors = self.registry.descriptors_for(vmid, self.unit_dir)
        if not descriptors:
            log.info('No virtiofs shares configured for VM {}.', vmid)
            return None
        memory_mb = self.vm_configs.load(vmid).memory_mb
        vfs_args = build_vfs_args(
            vmid,
            memory_mb,
            [d.share_path for d in descriptors],
            runtime_dir=self.units.runtime_dir,
        )
        log.debug('VM generated virtiofs arguments: {}', vfs_args)
        self.units.ensure_runtime_dir()
        try:
            for desc in descriptors:
                self.units.install_and_start(desc)
            self.mutator.inject(vmid, vfs_args)
        except (VirtiofsHookError, CmdError, OSError) as ex:
            log.error('Provisioning VM {} failed: {}', vmid, ex)
            log.info('Cleaning up...')
            self.units.teardown(vmid, descriptors)
            self.mutator.handoff.discard(vmid)
            if isinstance(ex, ProvisionError):
                raise
            raise ProvisionError(
                f'Failed to provision virtiofs shares for VM {vmid}: {ex}'
            ) from ex
        return vfs_args

    def post_start(self, vmid: str) -> bool:
        log.info('{} started successfully.', vmid)
        return self.mutator.retract(vmid)

    def pre_stop(self, vmid: str) -> None:
        log.debug('{} will be stopped.', vmid)

    def post_stop(self, vmid: str) -> TeardownResult:
        log.info('{} stopped. Cleaning up virtiofs systemd units.', vmid)
        return self.units.teardown(
            vmid, self.registry.descriptors_for(vmid, self.unit_dir)
        )
