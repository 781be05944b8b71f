"""Fingerprinting, storage, insight and alert services."""
