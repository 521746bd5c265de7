"""Shared types, name helpers and JSON logging."""
