"""Maintenance and migration entry points."""
