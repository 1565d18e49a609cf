"""
Service layer for the takeoff import system.

This package contains framework-agnostic business logic that can be used
by CLI, API, or any other interface: column mapping, row validation,
metadata discovery, preview aggregation and the transactional commit.
"""

__version__ = "1.0.0"
