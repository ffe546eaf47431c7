"""grantsync: role template and binding controller."""

__version__ = "0.1.0"
