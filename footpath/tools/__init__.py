"""Command-line utilities for replaying and inspecting tracking data."""
