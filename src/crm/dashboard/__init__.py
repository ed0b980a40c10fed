"""Dashboard aggregates over a user's deals, clients and tasks."""
