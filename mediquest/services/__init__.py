"""AI flows, the scan pipeline and the service container."""
