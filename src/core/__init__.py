"""Core domain package for metronome.

Core contains cadence evaluation, deduplication, rule execution, and retention
logic without any Telegram or storage-specific code, keeping the scheduling
engine portable across backends.
"""
