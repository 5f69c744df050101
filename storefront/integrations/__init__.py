"""Integrations with external systems (cache, payment gateway)."""
