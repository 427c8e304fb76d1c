"""REST API for the Lifecycle Engine."""
