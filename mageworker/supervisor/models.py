from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from mageworker import settings


@dataclass(frozen=True)
class WorkerSettings:
    """
    Per-worker configuration, resolved once at startup.

    A `max_messages` of 0 means the instances never stop on their own.
    """
    instance_count: int = 1
    max_messages: int = settings.DEFAULT_MAX_MESSAGES

    def __post_init__(self) -> None:
        if self.instance_count < 1:
            raise ValueError(f"instance_count must be positive, got {self.instance_count}")
        if self.max_messages < 0:
            raise ValueError(f"max_messages must not be negative, got {self.max_messages}")

    @property
    def is_partitioned(self) -> bool:
        return self.instance_count > 1

    @property
    def has_message_cap(self) -> bool:
        return self.max_messages > 0


@dataclass(frozen=True)
class CommandSpec:
    """Everything needed to launch one worker instance."""
    executable: str
    args: Tuple[str, ...] = ()
    cwd: Optional[Path] = None
    env: Optional[Dict[str, str]] = field(default=None, compare=False)

    def argv(self) -> List[str]:
        return [self.executable, *self.args]
