"""Voice booking assistant: conversation, voice functions and booking sync."""

__version__ = "0.1.0"
