"""Core pieces of a terminal text editor: file I/O, edit locks, persistent undo and cursor history, and regex find."""

__version__ = "0.1.8"