"""SQL validation utilities for preventing injection attacks."""

import re

from duckkv.kernel.exceptions import ValidationError
from duckkv.kernel.logging import get_logger

logger = get_logger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_sql_identifier(
    identifier: str,
    identifier_type: str = "identifier",
    raise_on_invalid: bool = False,
) -> bool:
    """Validate a SQL identifier before it is interpolated into a statement.

    Table names cannot be bound as parameters, so they must match
    ``[a-zA-Z_][a-zA-Z0-9_]*``.

    Parameters
    ----------
    identifier : str
        The identifier to validate (e.g. table name)
    identifier_type : str, optional
        Human-readable type name for error messages
    raise_on_invalid : bool, optional
        Raise ValidationError instead of logging a warning and returning False

    Returns
    -------
    bool
        True if identifier is valid, False otherwise

    Raises
    ------
    ValidationError
        If raise_on_invalid=True and identifier is invalid

    Examples
    --------
    >>> validate_sql_identifier("keyv")
    True
    >>> validate_sql_identifier("store.keyv")
    False
    """
    is_valid = bool(_IDENTIFIER_PATTERN.match(identifier))

    if not is_valid:
        constraint = (
            "must start with letter/underscore and contain only letters, numbers, and underscores"
        )
        if raise_on_invalid:
            raise ValidationError(identifier_type, constraint, identifier)

        logger.warning(f"Invalid {identifier_type} '{identifier}': {constraint}")

    return is_valid


def quote_sql_literal(value: str) -> str:
    """Render *value* as a single-quoted SQL string literal.

    Only for statements that cannot take bound parameters (``ATTACH``).

    Examples
    --------
    >>> quote_sql_literal("it's")
    "'it''s'"
    """
    return "'" + value.replace("'", "''") + "'"
