def ensure_positive_int(value, field: str) -> int:
    if value is None or isinstance(value, bool):
        raise ValueError(f"{field} must be >= 0")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer")
    if number != value and str(number) != str(value).strip():
        # rejects 2.5 and "2.5" but accepts 2.0 and "2"
        raise ValueError(f"{field} must be an integer")
    if number < 0:
        raise ValueError(f"{field} must be >= 0")
    return number


def ensure_non_empty_str(value, field: str) -> str:
    s = str(value).strip() if value is not None else ""
    if not s:
        raise ValueError(f"{field} required")
    return s
