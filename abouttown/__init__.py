"""About Town request admission and anti-abuse layer."""

__version__ = "1.0.0"
