"""DMI signal trader: real-time trigger and order-execution engine"""

__version__ = "1.0.0"
