"""
tarmover: virtual tar archives on S3-compatible storage.

Bundles many local files into a tar stream that is uploaded without touching
disk, moves objects with concurrent multipart transfers, and extracts a single
archived file from the remote archive with one ranged GET.
"""

__version__ = "1.0.0"

from tarmover.cli import main

__all__ = ["main", "__version__"]
