"""Shared kernel: logging, time helpers and other cross-cutting utilities."""
