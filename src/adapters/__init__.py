"""Adapters layer for the case reference service.

This module contains the storage adapters that interface with the databases.
Adapters implement Port interfaces defined in the domain layer.
"""
