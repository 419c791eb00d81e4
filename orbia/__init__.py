"""Orbia agent core: orchestration, durable threads and long-term memory."""

__version__ = "0.1.0"
