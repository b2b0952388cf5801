"""
Input validation utilities for the card scanner.

This module provides validation functions for paths and numeric options
coming from the command line before they reach the scan engine.
"""

from typing import Optional, Union
from pathlib import Path
from cardscan.utils.error_handler import ConfigurationError


def validate_file_path(file_path: Union[str, Path], must_exist: bool = False) -> Path:
    """
    Validate and normalize a file path.

    Args:
        file_path: File path to validate
        must_exist: Whether the file must already exist

    Returns:
        Normalized Path object

    Raises:
        ConfigurationError: If path is invalid or file doesn't exist when required
    """
    try:
        path = Path(file_path)

        if must_exist and not path.exists():
            raise ConfigurationError(
                f"File does not exist: {path}",
                details={"file_path": str(path), "must_exist": must_exist}
            )

        return path.resolve()

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Invalid file path: {file_path}",
            details={"file_path": str(file_path), "error": str(e)}
        )


def validate_numeric_range(
    value: Union[int, float],
    min_value: Optional[Union[int, float]] = None,
    max_value: Optional[Union[int, float]] = None,
    field_name: str = "value"
) -> Union[int, float]:
    """
    Validate a numeric value is within specified range.

    Raises:
        ConfigurationError: If value is outside the allowed range
    """
    if min_value is not None and value < min_value:
        raise ConfigurationError(
            f"{field_name} {value} is below minimum {min_value}",
            details={
                "field_name": field_name,
                "value": value,
                "min_value": min_value,
                "max_value": max_value
            }
        )

    if max_value is not None and value > max_value:
        raise ConfigurationError(
            f"{field_name} {value} is above maximum {max_value}",
            details={
                "field_name": field_name,
                "value": value,
                "min_value": min_value,
                "max_value": max_value
            }
        )

    return value
