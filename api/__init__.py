"""
SQL Verifier API
================

HTTP wrapper around the SQL semantic verifier.
"""

__version__ = "0.1.0"
