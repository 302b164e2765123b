from abc import ABC, abstractmethod

from shareit.common.logging import get_logger


class BaseIntegration(ABC):
    """Base class for the external services the violation engine talks to.

    Subclasses get a namespaced logger and must report reachability through
    ``health_check`` so the host can verify the gateway at startup.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = get_logger(f"integrations.{name}")

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the integration is reachable and functional."""
        ...
