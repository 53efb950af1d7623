"""Conversion of a group and a service name into a storage key."""

_SEPARATORS = ("/", "_", ".", ",", " ")


def _sanitize(value: str) -> str:
    value = value.lower().strip()
    for separator in _SEPARATORS:
        value = value.replace(separator, "-")
    return value


def convert_group_and_service_to_key(group: str, service: str) -> str:
    """Return the key that identifies ``service`` within ``group``."""
    return f"{_sanitize(group)}_{_sanitize(service)}"