"""Key namespaces - logical keys to physical store keys."""

REGISTERED_KEY_PREFIX = "/registered/"
CONFIG_KEY_PREFIX = "/config/"


def registration_key(key: str) -> str:
    """Physical store key for a registration."""
    return f"{REGISTERED_KEY_PREFIX}{key}"


def config_key(key: str) -> str:
    """Physical store key for a configuration entry."""
    return f"{CONFIG_KEY_PREFIX}{key}"


def logical_registration_key(physical_key: str) -> str:
    """Strip the registration prefix from a scanned key."""
    return physical_key[len(REGISTERED_KEY_PREFIX):]
