"""docsync: scheduled documentation synchronization.

Fetches external documentation pages, converts and hashes their content,
and incrementally re-indexes only what changed.
"""

__version__ = "0.1.0"
