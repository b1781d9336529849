"""Shared helpers for the poolfleet operator."""
