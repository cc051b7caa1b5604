"""Human-readable formatting of model sizes."""

_UNITS = ["KiB", "MiB", "GiB", "TiB", "PiB"]


def format_size(size_bytes: int) -> str:
    """Format a byte count using base-1024 units.

    Counts under 1024 render as whole bytes ("512 B"). Larger counts use the
    largest unit the value reaches, with one fractional digit ("4.2 GiB").

    Raises:
        ValueError: If ``size_bytes`` is negative.
    """
    if size_bytes < 0:
        raise ValueError(f"size must be non-negative, got {size_bytes}")
    if size_bytes < 1024:
        return f"{size_bytes} B"

    rank = 0
    while rank < len(_UNITS) - 1 and size_bytes >= 1024 ** (rank + 2):
        rank += 1
    value = size_bytes / 1024 ** (rank + 1)
    return f"{value:.1f} {_UNITS[rank]}"
