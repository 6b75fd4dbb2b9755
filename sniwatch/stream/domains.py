"""Suffix variants of a domain, for promoting it to the manual domain list."""

from typing import List


def domain_variants(domain: str) -> List[str]:
    """
    Most specific first, stopping before the bare top-level label.

        >>> domain_variants("a.b.example.com")
        ['a.b.example.com', 'b.example.com', 'example.com']
        >>> domain_variants("com")
        []
    """
    labels = domain.split(".")
    return [".".join(labels[i:]) for i in range(len(labels) - 1)]
