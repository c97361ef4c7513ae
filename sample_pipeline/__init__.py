"""
Sample Ingestion Pipeline

Analyzes uploaded audio samples (level, quality, tempo, key, waveform
overview) and ingests them in batches with bounded concurrency and
rollback of partial uploads.
"""

__version__ = "1.0.0"
__author__ = "Audio Analysis Team"
