"""Core configuration and security primitives."""
