"""Utility functions for parsing edge handle specifications."""

HANDLE_KINDS = ("input", "output")


def _validate_has_separator(text: str) -> None:
    """Validate that text contains a hyphen separator.

    Precondition:
        text is a non-None string

    Postcondition:
        raises ValueError if '-' not in text, otherwise returns None

    Args:
        text: string to validate

    Raises:
        ValueError: if text does not contain a hyphen
    """
    if "-" not in text:
        raise ValueError(f"Invalid handle: '{text}'. Expected 'output-N' or 'input-N'")


def _split_handle_string(text: str) -> tuple[str, str]:
    """Split text on the last hyphen and trim whitespace from both parts.

    Precondition:
        text contains at least one hyphen

    Postcondition:
        returns (kind, index_string) where both are stripped of whitespace

    Args:
        text: string in format "kind-N"

    Returns:
        tuple of (kind, index_string) with whitespace removed
    """
    kind, index_str = text.rsplit("-", 1)
    return kind.strip(), index_str.strip()


def _parse_index_value(index_str: str, text: str) -> int:
    """Convert index string to a non-negative int.

    Precondition:
        index_str is a non-None string
        text is the full handle (used for error messages)

    Postcondition:
        returns int value of index_str, which is >= 0

    Args:
        index_str: string representation of an integer
        text: full handle text (for error messages)

    Returns:
        int value of index_str

    Raises:
        ValueError: if index_str is not a non-negative integer
    """
    try:
        index = int(index_str)
    except ValueError as exc:
        raise ValueError(f"Invalid port index '{index_str}' in handle '{text}'.") from exc
    if index < 0:
        raise ValueError(f"Invalid port index '{index_str}' in handle '{text}'.")
    return index


def parse_handle(text: str) -> tuple[str, int]:
    """Parse a 'kind-N' handle string into a (kind, index) tuple.

    Precondition:
        text is a string in format "output-N" or "input-N"

    Postcondition:
        returns (kind, index) where kind is "input" or "output" and index >= 0

    Args:
        text: handle string (e.g., "output-1")

    Returns:
        Tuple of (kind, index)

    Raises:
        ValueError: If format is invalid, kind is unknown or index is not a number
    """
    if not isinstance(text, str):
        raise ValueError(f"Invalid handle: {text!r}. Expected a string")
    _validate_has_separator(text)
    kind, index_str = _split_handle_string(text)
    if kind not in HANDLE_KINDS:
        raise ValueError(f"Invalid handle kind '{kind}' in '{text}'. Expected one of {HANDLE_KINDS}")
    return kind, _parse_index_value(index_str, text)


def parse_handle_index(text: str, expected_kind: str) -> int:
    """Parse a handle string and check that it is of the expected kind.

    Args:
        text: handle string (e.g., "input-0")
        expected_kind: "input" or "output"

    Returns:
        the port index

    Raises:
        ValueError: if the handle is malformed or of the wrong kind
    """
    kind, index = parse_handle(text)
    if kind != expected_kind:
        raise ValueError(f"Expected an {expected_kind} handle, got '{text}'")
    return index


def format_handle(kind: str, index: int) -> str:
    """Inverse of parse_handle"""
    return f"{kind}-{index}"
