"""Shared helpers: clients, credentials, polling and waiters."""
