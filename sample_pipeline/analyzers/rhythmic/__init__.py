"""Tempo estimation."""
