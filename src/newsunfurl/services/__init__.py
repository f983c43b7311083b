"""Decoding, retry and processing services."""
