"""
reapack-repo: build, check and publish a ReaPack repository index.
"""

__version__ = "0.1.0"
