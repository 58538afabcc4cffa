"""
Service layer: analytics, suggestions, migration, import and export.
"""
