"""Result dataclasses used by best-effort teardown."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TeardownResult:
    stopped: list[str] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, list[str]]:
        return {
            'stopped': list(self.stopped),
            'disabled': list(self.disabled),
            'removed': list(self.removed),
            'failed': list(self.failed),
        }
