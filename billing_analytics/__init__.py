"""
Billing Analytics Engine

Real-time sales and inventory metrics derived from billing snapshots.
"""

__version__ = "1.0.0"
