"""Readwise Reader REST API access."""
