"""virtiofsd systemd units: template rendering, systemctl control, and lifecycle.

Provisioning and teardown handle errors differently.
:meth:`UnitLifecycleManager.install_and_start` raises on the first failure and
a VM must not boot with a subset of its shares.
:meth:`UnitLifecycleManager.teardown` logs and records failures and keeps
going, so a stale unit never blocks stopping or deleting a VM.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Protocol

import ubelt as ub
from loguru import logger

from .config import VirtiofsdConfig
from .errors import ProvisionError, RuntimeDirError, UnitRenderError
from .results import TeardownResult
from .shares import UnitDescriptor
from .util import CmdError, run_cmd

log = logger

UNIT_TEMPLATE = (
    ub.codeblock(
        '''
        [Unit]
        Description=virtiofsd filesystem share at {share_path} for VM %i
        StopWhenUnneeded=true

        [Service]
        Type=simple
        RuntimeDirectory={runtime_dir_name}
        RuntimeDirectoryPreserve=yes
        PIDFile={runtime_dir}/.run.virtiofsd.%i-{share_id}.sock.pid
        ExecStart={virtiofsd} --log-level {log_level} --socket-path {runtime_dir}/%i-{share_id}.sock --shared-dir {share_path} --cache={cache}{extra_args}

        [Install]
        RequiredBy=%i.scope
        '''
    )
    + '\n'
)


def render_unit(template: str, params: Mapping[str, str]) -> str:
    """Fill ``{name}`` placeholders of a unit template. No file I/O."""
    try:
        return template.format_map(dict(params))
    except (KeyError, IndexError, ValueError) as ex:
        raise UnitRenderError(f'Failed to render unit template: {ex!r}') from ex


class UnitController(Protocol):
    """Capability for installing and driving systemd template units."""

    def is_installed(self, desc: UnitDescriptor) -> bool: ...

    def install(self, desc: UnitDescriptor, content: str) -> None: ...

    def remove(self, desc: UnitDescriptor) -> None: ...

    def reload_index(self) -> None: ...

    def enable(self, desc: UnitDescriptor) -> None: ...

    def start(self, desc: UnitDescriptor) -> None: ...

    def stop(self, desc: UnitDescriptor) -> None: ...

    def disable(self, desc: UnitDescriptor) -> None: ...


class SystemctlUnitController:
    """UnitController backed by unit files on disk and ``systemctl``."""

    def __init__(self, systemctl: str = 'systemctl') -> None:
        self.systemctl = systemctl

    def _systemctl(self, *args: str) -> None:
        run_cmd([self.systemctl, *args], check=True, capture=True)

    def is_installed(self, desc: UnitDescriptor) -> bool:
        return Path(desc.unit_file_path).exists()

    def install(self, desc: UnitDescriptor, content: str) -> None:
        Path(desc.unit_file_path).write_text(content, encoding='utf-8')

    def remove(self, desc: UnitDescriptor) -> None:
        Path(desc.unit_file_path).unlink()

    def reload_index(self) -> None:
        self._systemctl('daemon-reload')

    def enable(self, desc: UnitDescriptor) -> None:
        self._systemctl('enable', desc.instance_name)

    def start(self, desc: UnitDescriptor) -> None:
        self._systemctl('start', desc.instance_name)

    def stop(self, desc: UnitDescriptor) -> None:
        self._systemctl('stop', desc.instance_name)

    def disable(self, desc: UnitDescriptor) -> None:
        self._systemctl('disable', desc.instance_name)


class UnitLifecycleManager:
    def __init__(
        self,
        controller: UnitController,
        *,
        runtime_dir: str = '/run/virtiofsd',
        virtiofsd: VirtiofsdConfig | None = None,
        template: str = UNIT_TEMPLATE,
    ) -> None:
        self.controller = controller
        self.runtime_dir = runtime_dir
        self.virtiofsd = virtiofsd or VirtiofsdConfig()
        self.template = template

    def unit_params(self, desc: UnitDescriptor) -> dict[str, str]:
        extra = ' '.join(self.virtiofsd.extra_args)
        return {
            'share_path': desc.share_path,
            'share_id': desc.share_id,
            'runtime_dir': str(Path(self.runtime_dir)),
            'runtime_dir_name': Path(self.runtime_dir).name,
            'virtiofsd': self.virtiofsd.binary,
            'log_level': self.virtiofsd.log_level,
            'cache': self.virtiofsd.cache,
            'extra_args': f' {extra}' if extra else '',
        }

    def ensure_runtime_dir(self) -> None:
        rdir = Path(self.runtime_dir)
        if rdir.is_dir():
            return
        log.info('Creating directory: {}', rdir)
        try:
            ub.Path(rdir).ensuredir()
        except OSError as ex:
            raise RuntimeDirError(f'Failed to create {rdir}: {ex}') from ex

    def install_and_start(self, desc: UnitDescriptor) -> bool:
        """Install (when absent), enable and start one share's unit.

        Returns True when the unit file was written by this call. Any failure
        propagates; the caller is responsible for rolling back.
        """
        log.info('attempting to install unit {} ...', desc.unit_name)
        if not Path(self.runtime_dir).is_dir():
            raise ProvisionError(f'{self.runtime_dir} does not exist!')
        fresh = not self.controller.is_installed(desc)
        if fresh:
            content = render_unit(self.template, self.unit_params(desc))
            try:
                self.controller.install(desc, content)
            except OSError as ex:
                raise ProvisionError(
                    f'Failed to write {desc.unit_file_path}: {ex}'
                ) from ex
            self.controller.reload_index()
            self.controller.enable(desc)
        else:
            log.debug('Unit file {} already present', desc.unit_file_path)
        self.controller.start(desc)
        return fresh

    def teardown(
        self, vmid: str, descriptors: Iterable[UnitDescriptor]
    ) -> TeardownResult:
        result = TeardownResult()
        for desc in descriptors:
            log.info('attempting to remove unit {} ...', desc.unit_name)
            steps = [
                ('stop', self.controller.stop, result.stopped),
                ('disable', self.controller.disable, result.disabled),
                ('remove', self.controller.remove, result.removed),
            ]
            for action, func, done in steps:
                try:
                    func(desc)
                except (CmdError, OSError) as ex:
                    log.warning(
                        'Could not {} {}: {}', action, desc.instance_name, ex
                    )
                    result.failed.append(f'{action}:{desc.instance_name}')
                else:
                    done.append(desc.instance_name)
            try:
                self.controller.reload_index()
            except (CmdError, OSError) as ex:
                log.warning('Could not reload systemd units: {}', ex)
                result.failed.append(f'reload:{desc.instance_name}')
        if result.failed:
            log.warning(
                'Teardown for VM {} finished with {} failure(s)',
                vmid,
                len(result.failed),
            )
        return result
