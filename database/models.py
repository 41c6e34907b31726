"""
Data models for the chat media bot database.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class CommandModel:
    """Model for a command's toggle state and usage."""
    name: str
    enabled: bool = True
    usage_count: int = 0
    last_used: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert model to dictionary."""
        return {
            'name': self.name,
            'enabled': self.enabled,
            'usage_count': self.usage_count,
            'last_used': self.last_used.isoformat() if self.last_used else None
        }
