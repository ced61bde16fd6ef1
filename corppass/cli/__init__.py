"""CorpPass command-line interface."""
