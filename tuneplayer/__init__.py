"""Tune Player - practice player for ABC tunes with a score-following cursor."""

__version__ = '0.1.0'
