"""Proxmox VE hookscript that runs one virtiofsd systemd unit per shared folder."""

from __future__ import annotations

__version__ = '0.1.0'
