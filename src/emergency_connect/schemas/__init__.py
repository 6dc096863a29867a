# src/emergency_connect/schemas/__init__.py
"""Pydantic schemas for the Emergency Connect API and analyzers."""
