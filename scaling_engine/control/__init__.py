"""
Control Module
==============
Asyncio control loops cho targets, workloads và node-group planner.
"""

from .driver import ControlLoopDriver

__all__ = ['ControlLoopDriver']
