"""Backend package: persistence models for the takeoff import system."""
