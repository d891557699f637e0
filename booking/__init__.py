"""Appointment scheduling and booking core."""
