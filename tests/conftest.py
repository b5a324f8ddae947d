from __future__ import annotations

from pathlib import Path

import pytest

from virtiofs_hook.handoff import PendingArgsStore
from virtiofs_hook.mutator import ConfigMutator
from virtiofs_hook.phases import PhaseController
from virtiofs_hook.pveconf import PveConfigStore
from virtiofs_hook.shares import ShareRegistry, UnitDescriptor
from virtiofs_hook.units import UnitLifecycleManager
from virtiofs_hook.util import CmdError, CmdResult


class FakeUnitController:
    """In-memory stand-in for systemd, recording every call."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.enabled: set[str] = set()
        self.running: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.fail_install: set[str] = set()
        self.fail_stop: set[str] = set()

    def is_installed(self, desc: UnitDescriptor) -> bool:
        return desc.unit_file_path in self.files

    def install(self, desc: UnitDescriptor, content: str) -> None:
        self.calls.append(('install', desc.unit_name))
        if desc.unit_name in self.fail_install:
            raise PermissionError(f'cannot write {desc.unit_file_path}')
        self.files[desc.unit_file_path] = content

    def remove(self, desc: UnitDescriptor) -> None:
        self.calls.append(('remove', desc.unit_name))
        if desc.unit_file_path not in self.files:
            raise FileNotFoundError(desc.unit_file_path)
        del self.files[desc.unit_file_path]

    def reload_index(self) -> None:
        self.calls.append(('reload', ''))

    def enable(self, desc: UnitDescriptor) -> None:
        self.calls.append(('enable', desc.instance_name))
        self.enabled.add(desc.instance_name)

    def start(self, desc: UnitDescriptor) -> None:
        self.calls.append(('start', desc.instance_name))
        self.running.add(desc.instance_name)

    def stop(self, desc: UnitDescriptor) -> None:
        self.calls.append(('stop', desc.instance_name))
        if desc.instance_name in self.fail_stop:
            raise CmdError(['systemctl', 'stop'], CmdResult(1, '', 'boom'))
        self.running.discard(desc.instance_name)

    def disable(self, desc: UnitDescriptor) -> None:
        self.calls.append(('disable', desc.instance_name))
        self.enabled.discard(desc.instance_name)

    def actions(self, name: str) -> list[str]:
        return [target for action, target in self.calls if action == name]


def write_vm_conf(conf_dir: Path, vmid: str, body: str) -> Path:
    conf_dir.mkdir(parents=True, exist_ok=True)
    fpath = conf_dir / f'{vmid}.conf'
    fpath.write_text(body, encoding='utf-8')
    return fpath


@pytest.fixture
def fake_units() -> FakeUnitController:
    return FakeUnitController()


@pytest.fixture
def hook_env(tmp_path: Path, fake_units: FakeUnitController):
    """Build a PhaseController over tmp dirs and a fake unit controller."""

    def _make(share_map: str) -> PhaseController:
        vm_configs = PveConfigStore(tmp_path / 'qemu-server')
        units = UnitLifecycleManager(
            fake_units, runtime_dir=str(tmp_path / 'run' / 'virtiofsd')
        )
        mutator = ConfigMutator(vm_configs, PendingArgsStore(tmp_path / 'run'))
        return PhaseController(
            ShareRegistry.parse(share_map),
            units,
            mutator,
            vm_configs,
            unit_dir=str(tmp_path / 'systemd'),
        )

    return _make
