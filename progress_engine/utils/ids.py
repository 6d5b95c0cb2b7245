"""Entity id generation"""
from typing import Optional
from uuid import uuid4


class IdGenerator:
    """UUID-based id source, injected into engines so tests can make ids predictable"""

    def new_id(self, prefix: Optional[str] = None) -> str:
        value = str(uuid4())
        return f"{prefix}_{value}" if prefix else value
