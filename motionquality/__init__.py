"""Real-time movement-quality scoring from dual-model pose estimation."""

__version__ = "0.1.0"
