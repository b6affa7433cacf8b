"""Conduit CLI (typer)."""
