"""Celery application and the commit task of the takeoff import system."""
