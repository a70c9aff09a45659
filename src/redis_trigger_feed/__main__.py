"""Make package runnable with python -m redis_trigger_feed.

This module provides the entry point for running the package as a module
(python -m redis_trigger_feed) and for the installed console script (redis-trigger-feed).
"""

import sys

from redis_trigger_feed.cli import main

if __name__ == "__main__":
    sys.exit(main())
