"""CrowdPulse: live-event crowd prediction scheduler."""

__version__ = "0.1.0"
__author__ = "CrowdPulse Team"

__all__ = ["__version__", "__author__"]
