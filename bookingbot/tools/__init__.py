"""Collaborators and domain services consumed by the dialogue engine."""
