# src/hirechat/core/__init__.py
"""Core configuration for the HireChat sync service."""
