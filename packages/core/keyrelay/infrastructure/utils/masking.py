"""Helpers that keep credential material out of status output and logs."""

NO_KEY_LABEL = "<no-key>"


def mask_key(key: str | None) -> str:
    """Return a short, non-reversible label for a credential.

    Keys longer than 8 characters keep their first and last four characters;
    shorter keys keep only their first and last character.

    Example:
        ```python
        mask_key("AIzaSyA1234567890abcd")  # "AIza...abcd"
        mask_key("short")                  # "s***t"
        ```
    """
    if not key:
        return NO_KEY_LABEL
    if len(key) <= 8:
        return f"{key[0]}***{key[-1]}"
    return f"{key[:4]}...{key[-4:]}"


def token_tail(token: str | None, length: int = 8) -> str:
    """Return the last ``length`` characters of a token, or "N/A"."""
    if not token:
        return "N/A"
    return token[-length:]
