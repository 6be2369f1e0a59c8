"""Lumos Memory command-line interface."""
