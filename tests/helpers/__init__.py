"""Shared builders for identity store tests."""
