"""PostgreSQL adapters for the community services."""
