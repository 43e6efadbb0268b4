"""Human readable rendering helpers for alert messages."""

_UNITS = (
    ("TB", 1024**4),
    ("GB", 1024**3),
    ("MB", 1024**2),
    ("KB", 1024),
)


def format_bytes(value: int) -> str:
    """Render a byte count with binary units, e.g. ``1.50 GB``."""

    for unit, size in _UNITS:
        if value >= size:
            return f"{value / size:.2f} {unit}"
    return f"{value} B"


def format_timestamp(value) -> str:
    if value is None:
        return "never"
    return value.strftime("%Y-%m-%d %H:%M:%S")


__all__ = ["format_bytes", "format_timestamp"]
