"""
FLEETWATCH Persistence
"""

from .state_db import StateDatabase

__all__ = ["StateDatabase"]
