"""Audit-to-upgrade orchestration core."""
