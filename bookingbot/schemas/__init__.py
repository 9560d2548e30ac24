"""Pydantic models shared by the booking core."""
