"""Application layer: the parking services and their DTOs"""

from .rate_engine import RateEngine
from .space_allocator import SpaceAllocator
from .session_orchestrator import SessionOrchestrator

__all__ = ["RateEngine", "SpaceAllocator", "SessionOrchestrator"]
