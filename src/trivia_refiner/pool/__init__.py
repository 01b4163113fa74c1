"""Concurrent worker pool: credentials, progress, workers and coordinator."""
