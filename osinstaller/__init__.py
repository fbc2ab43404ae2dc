"""Stream, archive, ISO 9660 and boot-configuration helpers for installing an OS image."""

__version__ = "0.1.0"