"""Cross-cutting HTTP helpers: error envelope, request ids and ops endpoints."""
