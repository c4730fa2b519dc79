"""probehub — scheduled health checks with an HTTP readiness probe."""
