"""Hookscript configuration: host paths and virtiofsd options, stored as TOML."""

from __future__ import annotations

import sys
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

from .util import expand

CONFIG_FILENAME = 'virtiofs_hook.toml'
SHARE_MAP_FILENAME = 'virtiofs_hook.conf'


def script_dir() -> Path:
    """Directory holding the executed hookscript (e.g. a snippets storage)."""
    return Path(sys.argv[0]).resolve().parent


@dataclass
class PathsConfig:
    share_map: str = ''
    unit_dir: str = '/etc/systemd/system'
    runtime_dir: str = '/run/virtiofsd'
    handoff_dir: str = '/run'
    pve_config_dir: str = '/etc/pve/qemu-server'


@dataclass
class VirtiofsdConfig:
    binary: str = '/usr/libexec/virtiofsd'
    cache: str = 'auto'
    debug: bool = False
    extra_args: list[str] = field(
        default_factory=lambda: [
            '--announce-submounts',
            '--inode-file-handles=mandatory',
        ]
    )

    @property
    def log_level(self) -> str:
        return 'debug' if self.debug else 'info'


@dataclass
class HookConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    virtiofsd: VirtiofsdConfig = field(default_factory=VirtiofsdConfig)
    verbosity: int = 1

    def expanded_paths(self) -> 'HookConfig':
        if not self.paths.share_map:
            self.paths.share_map = str(script_dir() / SHARE_MAP_FILENAME)
        self.paths.share_map = expand(self.paths.share_map)
        self.paths.unit_dir = expand(self.paths.unit_dir)
        self.paths.runtime_dir = expand(self.paths.runtime_dir)
        self.paths.handoff_dir = expand(self.paths.handoff_dir)
        self.paths.pve_config_dir = expand(self.paths.pve_config_dir)
        self.virtiofsd.binary = expand(self.virtiofsd.binary)
        return self


def default_config_path() -> Path:
    return script_dir() / CONFIG_FILENAME


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def dump_toml(cfg: HookConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    # Top-level keys must precede the first table header.
    verbosity = d.pop('verbosity', 1)
    if verbosity != 1:
        lines.append(f'verbosity = {verbosity}')
        lines.append('')
    for section, body in d.items():
        if isinstance(body, dict):
            lines.append(f'[{section}]')
            for k, v in body.items():
                if isinstance(v, bool):
                    lines.append(f'{k} = {"true" if v else "false"}')
                elif isinstance(v, int):
                    lines.append(f'{k} = {v}')
                elif isinstance(v, list):
                    parts = [f'"{_toml_escape(str(item))}"' for item in v]
                    lines.append(f'{k} = [{", ".join(parts)}]')
                else:
                    lines.append(f'{k} = "{_toml_escape(str(v))}"')
            lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def load(path: Path) -> HookConfig:
    raw = tomllib.loads(path.read_text(encoding='utf-8'))
    cfg = HookConfig()
    for section in ('paths', 'virtiofsd'):
        if section in raw and isinstance(raw[section], dict):
            sec = raw[section]
            obj = getattr(cfg, section)
            for k, v in sec.items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def load_or_default(path: Path | None = None) -> HookConfig:
    """Load the hook config, falling back to defaults when no file exists."""
    fpath = path or default_config_path()
    if not fpath.exists():
        return HookConfig()
    return load(fpath)


def save(path: Path, cfg: HookConfig) -> None:
    path.write_text(dump_toml(cfg), encoding='utf-8')
