"""Environment-backed settings for the e-invoice sync bridge."""

import logging
import os


class HelperConfig:
    """Reads typed settings from environment variables and hands out the shared logger."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _read_raw(self, key: str, required: bool) -> str | None:
        """Return the stripped value of ``key`` or None when unset or blank.

        Raises:
            ValueError: If the variable is unset and ``required`` is True.
        """
        raw = (os.getenv(key.upper()) or "").strip()
        if not raw:
            if required:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return None
        return raw

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string setting.

        Args:
            key (str): Variable name, looked up in upper case.
            default (str | None): Used when the variable is unset. None makes the setting required.

        Returns:
            str: The value without surrounding whitespace.

        Raises:
            ValueError: If the variable is unset and there is no default.
        """
        raw = self._read_raw(key, required=default is None)
        return default if raw is None else raw

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a numeric setting. Values with a decimal point come back as float, others as int.

        Raises:
            ValueError: If the variable is unset without a default, or is not a number.
        """
        raw = self._read_raw(key, required=default is None)
        if raw is None:
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.")

    def get_clamped_number_val(self, key: str, default: float, min_val: float, max_val: float) -> float:
        """Read a numeric setting and pull it into [min_val, max_val], warning when it had to move."""
        val = self.get_number_val(key, default=default)
        clamped = max(min_val, min(max_val, val))
        if clamped != val:
            self._logger.warning(
                "Environment variable '%s'=%s is out of range [%s, %s]. Using %s.",
                key.upper(), val, min_val, max_val, clamped,
            )
        return clamped

    def get_logger(self) -> logging.Logger:
        return self._logger
