"""Command-line interface for inspecting and controlling the learning engine."""
