"""Hookscript entry point: argv normalization, logging setup, and dispatch.

Proxmox VE invokes the hookscript as ``<script> <vmid> <phase>``.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import scriptconfig as scfg
from loguru import logger

from .config import HookConfig, load_or_default
from .errors import SetupError
from .phases import PhaseController, parse_phase

log = logger


class HookCLI(scfg.DataConfig):
    """Run virtiofsd systemd units for the shared folders of a Proxmox VM."""

    vmid = scfg.Value('', type=str, help='VM id passed by the hypervisor.')
    phase = scfg.Value(
        '',
        type=str,
        help='One of: pre-start, post-start, pre-stop, post-stop.',
    )
    config = scfg.Value(
        None,
        help='Path to hook config TOML (default: virtiofs_hook.toml next to the script).',
    )
    share_map = scfg.Value(
        None,
        help='Path to the vmid:path[,path...] share map (overrides config).',
    )
    debug = scfg.Value(
        False,
        isflag=True,
        help='Verbose hook output and debug logging in virtiofsd.',
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        # ``config`` is our own TOML option, not scriptconfig's YAML loader.
        args = cls.cli(argv=argv, data=kwargs, special_options=False)
        phase = parse_phase(str(args.phase))
        vmid = str(args.vmid or '').strip()
        if not vmid:
            raise SetupError('A vmid is required.')
        cfg = _load_cfg(args.config)
        if args.share_map:
            cfg.paths.share_map = str(args.share_map)
        if args.debug:
            cfg.virtiofsd.debug = True
        cfg.expanded_paths()
        log.info('STARTING VIRTIOFS HOOKSCRIPT: {} {}', vmid, phase.value)
        PhaseController.from_config(cfg).run(vmid, phase)
        log.info('ENDING VIRTIOFS HOOKSCRIPT')
        return 0


def _load_cfg(config_path: str | None) -> HookConfig:
    if config_path is None:
        return load_or_default()
    path = Path(config_path)
    if not path.exists():
        raise SetupError(f'Config file not found: {path}')
    return load_or_default(path)


def _setup_logging(args_verbose: int, cfg_verbosity: int, debug: bool) -> None:
    logger.remove()
    effective_verbosity = args_verbose if args_verbose > 0 else cfg_verbosity
    level = 'WARNING'
    if effective_verbosity == 1:
        level = 'INFO'
    elif effective_verbosity >= 2:
        level = 'DEBUG'
    if debug:
        level = 'DEBUG'
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.add(
        sys.stderr,
        level=level,
        colorize=colorize,
        format='<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>',
    )
    log.debug(
        'Logging configured at {} (effective_verbosity={}, colorize={})',
        level,
        effective_verbosity,
        colorize,
    )


def _normalize_argv(argv: list[str]) -> list[str]:
    """Map the hypervisor's positional ``<vmid> <phase>`` onto options."""
    rest = list(argv)
    positional: list[str] = []
    while rest and len(positional) < 2 and not rest[0].startswith('-'):
        positional.append(rest.pop(0))
    out: list[str] = []
    for name, value in zip(('--vmid', '--phase'), positional):
        out.extend([name, value])
    return out + rest


def _count_verbose(argv: list[str]) -> int:
    count = 0
    for item in argv:
        if item == '--verbose':
            count += 1
        elif item.startswith('-') and not item.startswith('--'):
            short = item[1:]
            if short and set(short) <= {'v'}:
                count += len(short)
    return count


def _option_value(argv: list[str], name: str) -> str | None:
    for idx, item in enumerate(argv):
        if item == name:
            if idx + 1 < len(argv):
                return argv[idx + 1]
            return None
        if item.startswith(name + '='):
            return item[len(name) + 1 :]
    return None


def main(argv: list[str] | None = None) -> None:
    if argv is None:
        argv = sys.argv[1:]
    argv = _normalize_argv(argv)
    verbosity = 1
    debug = '--debug' in argv
    try:
        cfg = _load_cfg(_option_value(argv, '--config'))
        verbosity = cfg.verbosity
        debug = debug or bool(cfg.virtiofsd.debug)
    except Exception:
        verbosity = 1

    _setup_logging(_count_verbose(argv), verbosity, debug)

    try:
        rc = HookCLI.main(argv=argv)
    except Exception as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        log.error('Unhandled virtiofs hook error: {}', ex)
        sys.exit(2)

    if any(flag in argv for flag in ('-h', '--help')):
        sys.exit(0)
    if isinstance(rc, int):
        sys.exit(rc)
    sys.exit(0)
