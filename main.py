#!/usr/bin/env python3
"""Tune Player launcher.

Usage:
    python main.py [--catalogue CSV] [--sf2 FILE] [ABC_FILE]   # from project root
    python -m tuneplayer.main [...]
"""
import sys
from pathlib import Path

# Ensure the project root (this file's directory) is on sys.path so that
# `import tuneplayer` works regardless of how the script is invoked.
_root = str(Path(__file__).resolve().parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

from tuneplayer.main import main

if __name__ == '__main__':
    main()
