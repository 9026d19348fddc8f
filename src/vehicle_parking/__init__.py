"""
Vehicle Parking Session Engine

Allocates parking spaces, prices stays with cost-minimizing rate selection
and drives parking sessions through ACTIVE -> COMPLETED | CANCELLED inside
one unit of work per operation.
"""

from .application import SessionOrchestrator, SpaceAllocator, RateEngine
from .infrastructure import ServiceFactory

__version__ = "1.0.0"

__all__ = [
    "SessionOrchestrator", "SpaceAllocator", "RateEngine", "ServiceFactory",
    "__version__",
]
