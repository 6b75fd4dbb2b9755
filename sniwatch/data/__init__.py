"""Snapshot storage for windows and the ASN table."""
