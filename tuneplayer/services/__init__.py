"""Tune data and per-user persistence used by the desktop shell."""
