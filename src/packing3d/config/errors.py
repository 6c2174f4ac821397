"""
Configuration error type and dictionary access helpers.
"""


class ConfigurationError(ValueError):
    """Raised for invalid or inconsistent configuration values."""


class DictIO:
    """Case-insensitive access to configuration blocks read from JSON."""

    @staticmethod
    def _lowered(dictionary):
        return {key.lower() if isinstance(key, str) else key: value for key, value in dictionary.items()}

    @staticmethod
    def get_essential(dictionary, *keywords):
        lowered = DictIO._lowered(dictionary)
        for keyword in keywords:
            keyword_lower = keyword.lower() if isinstance(keyword, str) else keyword
            if keyword_lower in lowered:
                return lowered[keyword_lower]
        raise ConfigurationError(f"{keywords} is not included in the configuration block")

    @staticmethod
    def get_alternative(dictionary, keyword, default):
        lowered = DictIO._lowered(dictionary)
        keyword_lower = keyword.lower() if isinstance(keyword, str) else keyword
        if keyword_lower in lowered:
            return lowered[keyword_lower]
        return default

    @staticmethod
    def get_block(dictionary, keyword):
        """Return a sub-block, or an empty block if it is missing."""
        block = DictIO.get_alternative(dictionary, keyword, {})
        if not isinstance(block, dict):
            raise ConfigurationError(f"Block '{keyword}' must be a mapping, got {type(block).__name__}")
        return block
