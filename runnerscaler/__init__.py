"""Runner resource models, validation and replica autoscaling suggestions."""

__version__ = "0.1.0"
__all__ = ["runner", "deployment", "hra", "autoscaling"]