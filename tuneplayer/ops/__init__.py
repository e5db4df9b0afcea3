"""Operations modules - logic the player controller and UI call into.

Each module works on explicit arguments (schedule, score handles,
backends, player) so it can run without a window. app.py wires these
to UI signals.
"""
