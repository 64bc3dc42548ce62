"""Workflow definitions and storage adapters."""
