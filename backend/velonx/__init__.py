"""Velonx community backend: moderation, notifications, audit trail and error alerting."""
