from __future__ import annotations

from pathlib import Path

import pytest

from conftest import write_vm_conf

from virtiofs_hook.cli import (
    HookCLI,
    _count_verbose,
    _normalize_argv,
    _option_value,
    main,
)
from virtiofs_hook.config import HookConfig, load, save
from virtiofs_hook.errors import SetupError, UnknownPhaseError
from virtiofs_hook.util import CmdResult


def _write_cfg(tmp_path: Path) -> Path:
    cfg = HookConfig()
    cfg.paths.share_map = str(tmp_path / 'virtiofs_hook.conf')
    cfg.paths.unit_dir = str(tmp_path / 'systemd')
    cfg.paths.runtime_dir = str(tmp_path / 'run' / 'virtiofsd')
    cfg.paths.handoff_dir = str(tmp_path / 'run')
    cfg.paths.pve_config_dir = str(tmp_path / 'qemu-server')
    (tmp_path / 'systemd').mkdir()
    (tmp_path / 'virtiofs_hook.conf').write_text(
        '101: /mnt/data, /mnt/media\n', encoding='utf-8'
    )
    cfg_path = tmp_path / 'virtiofs_hook.toml'
    save(cfg_path, cfg)
    return cfg_path


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


def test_normalize_argv() -> None:
    assert _normalize_argv(['101', 'pre-start']) == [
        '--vmid',
        '101',
        '--phase',
        'pre-start',
    ]
    assert _normalize_argv(['101', 'post-stop', '--debug']) == [
        '--vmid',
        '101',
        '--phase',
        'post-stop',
        '--debug',
    ]
    assert _normalize_argv(['--vmid', '7']) == ['--vmid', '7']


def test_count_verbose() -> None:
    assert _count_verbose(['101', 'pre-start', '-vv']) == 2
    assert _count_verbose(['--verbose', '-x']) == 1


def test_full_lifecycle_via_cli(monkeypatch, tmp_path: Path) -> None:
    cfg_path = _write_cfg(tmp_path)
    conf = write_vm_conf(
        tmp_path / 'qemu-server', '101', 'args: -cpu host\nmemory: 2048\n'
    )
    calls = []
    monkeypatch.setattr(
        'virtiofs_hook.units.run_cmd',
        lambda cmd, **kwargs: (calls.append(cmd) or CmdResult(0, '', '')),
    )

    assert _run(['101', 'pre-start', '--config', str(cfg_path)]) == 0
    unit_file = tmp_path / 'systemd' / 'virtiofsd-101-data@.service'
    assert unit_file.exists()
    assert '--shared-dir /mnt/data' in unit_file.read_text(encoding='utf-8')
    assert ['systemctl', 'start', 'virtiofsd-101-media@101.service'] in calls
    text = conf.read_text(encoding='utf-8')
    assert text.startswith('args: -cpu host -object memory-backend-memfd')

    assert _run(['101', 'post-start', '--config', str(cfg_path)]) == 0
    assert conf.read_text(encoding='utf-8') == (
        'args: -cpu host\nmemory: 2048\n'
    )

    assert _run(['101', 'pre-stop', '--config', str(cfg_path)]) == 0
    assert _run(['101', 'post-stop', '--config', str(cfg_path)]) == 0
    assert not unit_file.exists()
    assert calls[-1] == ['systemctl', 'daemon-reload']


def test_unknown_phase_exits_nonzero(
    monkeypatch, tmp_path: Path, capsys
) -> None:
    cfg_path = _write_cfg(tmp_path)
    calls = []
    monkeypatch.setattr(
        'virtiofs_hook.units.run_cmd',
        lambda cmd, **kwargs: (calls.append(cmd) or CmdResult(0, '', '')),
    )
    assert _run(['101', 'rollback', '--config', str(cfg_path)]) == 2
    assert "got unknown phase 'rollback'" in capsys.readouterr().err
    assert calls == []
    assert not (tmp_path / 'run').exists()


def test_missing_share_map_exits_nonzero(tmp_path: Path) -> None:
    cfg_path = _write_cfg(tmp_path)
    (tmp_path / 'virtiofs_hook.conf').unlink()
    assert _run(['101', 'pre-start', '--config', str(cfg_path)]) == 2


def test_hook_cli_main_raises_domain_errors(tmp_path: Path) -> None:
    cfg_path = _write_cfg(tmp_path)
    with pytest.raises(UnknownPhaseError):
        HookCLI.main(
            argv=False, vmid='101', phase='migrate', config=str(cfg_path)
        )
    with pytest.raises(SetupError):
        HookCLI.main(argv=False, vmid='', phase='pre-stop', config=str(cfg_path))
    with pytest.raises(SetupError):
        HookCLI.main(
            argv=False,
            vmid='101',
            phase='pre-stop',
            config=str(tmp_path / 'nope.toml'),
        )


def test_option_value() -> None:
    assert _option_value(['--config', 'a.toml'], '--config') == 'a.toml'
    assert _option_value(['-v', '--config=b.toml'], '--config') == 'b.toml'
    assert _option_value(['--config'], '--config') is None
    assert _option_value(['--configs', 'c'], '--config') is None
    assert _option_value(['--debug'], '--config') is None


def test_config_equals_form_sets_verbosity(
    monkeypatch, tmp_path: Path
) -> None:
    cfg_path = _write_cfg(tmp_path)
    cfg = load(cfg_path)
    cfg.verbosity = 2
    save(cfg_path, cfg)
    seen = []
    monkeypatch.setattr(
        'virtiofs_hook.cli._setup_logging',
        lambda *args: seen.append(args),
    )
    assert _run(['101', 'pre-stop', f'--config={cfg_path}']) == 0
    assert seen == [(0, 2, False)]


def test_default_config_option_does_not_conflict(
    monkeypatch, tmp_path: Path
) -> None:
    cfg_path = _write_cfg(tmp_path)
    monkeypatch.setattr('sys.argv', [str(tmp_path / 'virtiofs-hook')])
    assert _run(['101', 'pre-stop']) == 0
    assert _run(['101', 'pre-stop', '--config', str(cfg_path)]) == 0
