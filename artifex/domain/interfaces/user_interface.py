"""Interface for interacting with the user (output only).

Defines the contract for displaying results, errors and the rate-limit
banner, allowing different UI implementations (e.g., console, GUI).
"""

import abc
from typing import Any

from artifex.domain.models.errors import UserFacingError
from artifex.domain.models.rate_limit import RateLimitSnapshot

class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The text to display.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error: UserFacingError, **kwargs: Any) -> None:
        """Displays a classified, actionable error to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_rate_limit(self, snapshot: RateLimitSnapshot) -> None:
        """Renders (or clears, when not limited) the cooldown banner."""
        pass
