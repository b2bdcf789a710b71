"""Bridge between the relational fax queue and the dialer's spool directories."""

__version__ = "0.1.0"
