#!/usr/bin/env python3
"""Tune Player - Desktop Application.

Search a CSV dump of The Session, open a tune's settings, and play them
with a cursor following the ABC text. Local ABC files can be opened
directly; every X: tune in the file becomes one version.

Usage:
    python -m tuneplayer.main [--catalogue CSV] [--sf2 FILE] [ABC_FILE]
    tune-player [--catalogue CSV] [--sf2 FILE] [ABC_FILE]
"""
import argparse
import sys

from PySide6.QtWidgets import QApplication

from .core.settings import Settings


def main():
    parser = argparse.ArgumentParser(description='Tune Player')
    parser.add_argument('abc_file', nargs='?', default=None,
                        help='ABC file to open on startup')
    parser.add_argument('--catalogue', type=str, default=None,
                        help='CSV catalogue of tune settings (overrides settings.json)')
    parser.add_argument('--sf2', type=str, default=None,
                        help='SoundFont for playback (default: sine instrument)')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to settings.json')
    parser.add_argument('--save-settings', action='store_true',
                        help='Persist --catalogue/--sf2 into the settings file')
    args = parser.parse_args()

    settings = Settings(args.config)
    if args.sf2 is not None:
        settings.sf2_path = args.sf2
    if args.catalogue is not None:
        settings.catalogue_path = args.catalogue
    if args.save_settings:
        settings.save()

    app = QApplication(sys.argv)
    app.setStyle('Fusion')

    # Import here so QApplication exists before any widget module loads
    from .app import App
    main_window = App(settings=settings, abc_path=args.abc_file)
    main_window.show()

    sys.exit(app.exec())


if __name__ == '__main__':
    main()
