"""Emergency Connect: covert help-summoning and incident response service."""

__version__ = "0.1.0"
