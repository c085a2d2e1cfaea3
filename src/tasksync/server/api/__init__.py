"""REST API routes for the tasksync server."""
