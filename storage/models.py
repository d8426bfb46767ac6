from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Entry:
    """Represents a stored value and, when tracked, its last write time."""

    value: str
    modified_at: Optional[datetime] = None

    def __str__(self) -> str:
        if self.modified_at is None:
            return self.value
        return f"{self.value} (modified {self.modified_at.isoformat()})"
