"""Shared data types and helpers used across the hub and engine."""
