"""Construction of the QEMU arguments that attach a VM to its virtiofsd sockets."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from .shares import share_id_for

DEFAULT_RUNTIME_DIR = '/run/virtiofsd'


def socket_path(runtime_dir: str, vmid: str, share_id: str) -> str:
    return str(Path(runtime_dir) / f'{vmid}-{share_id}.sock')


def memory_backend_args(memory_mb: int) -> list[str]:
    # vhost-user needs guest RAM in a shareable memfd.
    return [
        '-object',
        f'memory-backend-memfd,id=mem,size={int(memory_mb)}M,share=on',
        '-numa',
        'node,memdev=mem',
    ]


def share_device_args(
    vmid: str, paths: Sequence[str], runtime_dir: str = DEFAULT_RUNTIME_DIR
) -> list[str]:
    out: list[str] = []
    for char_id, path in enumerate(paths):
        share_id = share_id_for(path)
        sock = socket_path(runtime_dir, vmid, share_id)
        out.extend(['-chardev', f'socket,id=char{char_id},path={sock}'])
        out.extend(
            [
                '-device',
                f'vhost-user-fs-pci,chardev=char{char_id},tag={vmid}-{share_id}',
            ]
        )
    return out


def build_vfs_args(
    vmid: str,
    memory_mb: int,
    paths: Sequence[str],
    *,
    runtime_dir: str = DEFAULT_RUNTIME_DIR,
) -> str:
    """Return the launch argument fragment for a VM's shares.

    The result is used verbatim as a search needle when the fragment is
    later removed from the VM config, so it depends only on the inputs.

    Example:
        >>> build_vfs_args('101', 2048, ['/mnt/data'])
        '-object memory-backend-memfd,id=mem,size=2048M,share=on -numa node,memdev=mem -chardev socket,id=char0,path=/run/virtiofsd/101-data.sock -device vhost-user-fs-pci,chardev=char0,tag=101-data'
    """
    parts = memory_backend_args(memory_mb)
    parts.extend(share_device_args(str(vmid), paths, runtime_dir))
    return ' '.join(parts)
