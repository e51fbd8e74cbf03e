"""Orchestration core modules."""
