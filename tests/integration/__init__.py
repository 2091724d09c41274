"""Subprocess-level tests for ingest-harness; these spawn real child processes."""
