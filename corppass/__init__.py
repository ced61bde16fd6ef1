"""CorpPass single sign-on for service providers."""

__version__ = "0.1.0"
