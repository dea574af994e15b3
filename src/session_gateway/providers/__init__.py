"""Provider executors for session_gateway."""

from .base import BaseExecutor, ChunkStream
from .miromind import MiroMindExecutor
from .trae import TraeExecutor

__all__ = [
    "BaseExecutor",
    "ChunkStream",
    "MiroMindExecutor",
    "TraeExecutor",
]
