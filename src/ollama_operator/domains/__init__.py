"""Operator domains."""
