"""
slotbooking - availability scheduling and slot booking orchestration.
"""

__version__ = "0.1.0"
