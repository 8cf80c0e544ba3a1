"""Emergence command line interface."""
