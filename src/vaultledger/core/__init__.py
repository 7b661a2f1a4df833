"""
Shared building blocks: checked arithmetic, clocks, reentrancy guard,
access control, asset collaborators, configuration, logging and metrics.
"""

__all__ = []
