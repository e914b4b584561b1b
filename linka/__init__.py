"""Graph state synchronization engine for workspace schema graphs."""

__version__ = "0.3.0"
