"""Messaging engine service modules."""
