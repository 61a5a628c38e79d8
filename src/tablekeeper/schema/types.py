"""
Column type definition synthesis.

Turns partially populated catalog metadata into a complete type
definition usable in ``ALTER TABLE ... ADD``.
"""

from ..database.introspection import ColumnInfo


DEFAULT_BASE_TYPE = "VARCHAR"
DEFAULT_VARCHAR_LENGTH = 8000
DEFAULT_CHAR_LENGTH = 1

VARIABLE_CHARACTER_TYPES = ("VARCHAR", "NVARCHAR")
FIXED_CHARACTER_TYPES = ("CHAR", "NCHAR")
EXACT_NUMERIC_TYPES = ("DECIMAL", "NUMERIC")
FLOATING_TYPES = ("FLOAT", "REAL")
FRACTIONAL_SECOND_TYPES = ("TIME", "DATETIME2", "DATETIMEOFFSET")


def synthesize_column_type(column: ColumnInfo) -> str:
    """Build the full type definition for a column about to be added.

    Character types get their length (defaulting to 8000 for variable and 1
    for fixed length), DECIMAL/NUMERIC their precision and optional scale,
    FLOAT/REAL their precision and TIME-like types their fractional-second
    scale. Anything else is emitted as the bare type name. A missing type
    falls back to VARCHAR.

    Examples:
        >>> synthesize_column_type(ColumnInfo("name", "VARCHAR", char_size=50))
        'VARCHAR(50)'
        >>> synthesize_column_type(ColumnInfo("amount", "DECIMAL", numeric_precision=10, numeric_scale=2))
        'DECIMAL(10,2)'
    """
    base_type = column.data_type or DEFAULT_BASE_TYPE
    normalized = base_type.upper()

    if normalized in VARIABLE_CHARACTER_TYPES + FIXED_CHARACTER_TYPES:
        if column.char_size:
            return f"{base_type}({column.char_size})"
        if normalized in VARIABLE_CHARACTER_TYPES:
            return f"{base_type}({DEFAULT_VARCHAR_LENGTH})"
        return f"{base_type}({DEFAULT_CHAR_LENGTH})"

    if normalized in EXACT_NUMERIC_TYPES and column.numeric_precision:
        if column.numeric_scale:
            return f"{base_type}({column.numeric_precision},{column.numeric_scale})"
        return f"{base_type}({column.numeric_precision})"

    if normalized in FLOATING_TYPES and column.numeric_precision:
        return f"{base_type}({column.numeric_precision})"

    if normalized in FRACTIONAL_SECOND_TYPES and column.numeric_scale:
        return f"{base_type}({column.numeric_scale})"

    return base_type
