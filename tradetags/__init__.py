"""
Tag indexing, analytics and data migration for trade journal records.
"""

__version__ = "0.1.0"
