"""
Upload Retention - retention and backups for uploaded artifacts.

Keeps a directory of uploaded spreadsheets under control: old and duplicate
versions are purged by a retention policy, and files are snapshotted into a
separate backup store before they are overwritten.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
