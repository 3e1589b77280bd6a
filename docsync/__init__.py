"""
docsync: keeps a search index synchronized with a versioned object store.
"""

__version__ = "0.1.0"
