"""Replay report generation."""
