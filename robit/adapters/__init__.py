"""Adapters connect transports (terminal, chat bridges) to ``RobitService``."""

from .base import Adapter
from .queue import QueueAdapter
from .stdin import StdinAdapter

__all__ = ["Adapter", "QueueAdapter", "StdinAdapter"]
