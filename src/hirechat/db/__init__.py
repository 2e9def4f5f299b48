# src/hirechat/db/__init__.py
"""Database configuration and utilities."""

from .session import Base, SessionLocal, build_engine, get_db

__all__ = ["Base", "SessionLocal", "build_engine", "get_db"]
