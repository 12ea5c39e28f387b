"""This module provides a helper to load JSON topology files."""

import json

from speedwatch.utils.logger import Logger


def load_json(file_path: str):
    """Load a JSON file from a specific path.

    Args:
        file_path: The path to the JSON file to load.

    Returns:
        The JSON data from the file.

    Raises:
        FileNotFoundError: If the file cannot be opened.
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (FileNotFoundError, IOError) as e:
        logger = Logger.get_logger('JsonLoader')
        logger.error(f"Could not load JSON file from '{file_path}'")
        raise FileNotFoundError(f"Could not load JSON file from '{file_path}'") from e
