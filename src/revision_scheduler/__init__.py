"""Revision Scheduler: spaced-repetition buckets for coding-interview practice."""

__version__ = "0.1.0"
