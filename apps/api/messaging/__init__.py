"""Messaging thread and support case lifecycle engine."""
