"""Shared types, errors, configuration and protocols."""
