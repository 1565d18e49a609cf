"""API routers: takeoff import and projects."""
