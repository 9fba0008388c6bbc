"""Vlog domain exports."""
from .entity import Vlog
from .repository import VlogRepository

__all__ = ["Vlog", "VlogRepository"]
