"""
redis-trigger-feed: Redis pub/sub and stream trigger feed.

This package bridges messages arriving on Redis pub/sub channels, channel
patterns and streams to an external trigger manager, with one independent
listener per registered trigger.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
