"""
FastAPI application for the takeoff import system.

This package contains the REST API for analyzing takeoff files,
committing import payloads, and tracking commit jobs.
"""

__version__ = "1.0.0"
