"""Waveform preview generation."""
