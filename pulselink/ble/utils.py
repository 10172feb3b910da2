"""Utility functions for BLE operations."""

from typing import Optional


def sanitize_address(address: Optional[str]) -> Optional[str]:
    """
    Normalize a BLE address or identifier by removing common separators and lowercasing.

    Parameters:
        address: Address or identifier to normalize; may be None or consist only of whitespace.

    Returns:
        The normalized address with dashes, underscores, colons, and spaces removed and converted to lowercase, or None if the input is None or only whitespace.
    """
    if address is None:
        return None
    stripped = address.strip()
    if not stripped:
        return None
    for separator in ("-", "_", ":", " "):
        stripped = stripped.replace(separator, "")
    return stripped.lower()
