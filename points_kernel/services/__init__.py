"""Kernel services: write paths and the assignment workflow."""
