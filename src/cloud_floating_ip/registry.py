"""Hosting provider registry: name lookup and environment auto-detection."""

import logging
import os
from typing import Dict, List, Optional

from .aws import AWSHoster
from .config import Config
from .exceptions import MultipleProvidersDetected, NoProviderDetected, UnsupportedProvider
from .gcp import GCEHoster
from .hoster import Hoster
from .structured_events import StructuredEventLogger

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))


class HosterRegistry:
    """
    Maps provider names to adapters, in registration order.

    Auto-detection probes every registered adapter in that order. Exactly one
    positive probe is expected; several positive probes are reported as
    MultipleProvidersDetected rather than silently picking one.
    """

    def __init__(self, structured_logger: Optional[StructuredEventLogger] = None) -> None:
        self._hosters: Dict[str, Hoster] = {}
        self.structured_logger = structured_logger

    def register(self, name: str, hoster: Hoster) -> None:
        if name in self._hosters:
            raise ValueError(f"hoster '{name}' already registered")
        self._hosters[name] = hoster

    def names(self) -> List[str]:
        return list(self._hosters)

    def resolve(self, name: Optional[str] = None) -> Hoster:
        if name:
            hoster = self._hosters.get(name)
            if hoster is None:
                self._log(None, name, error=f"hoster not supported: {name}")
                raise UnsupportedProvider(f"hoster not supported: {name}")
            self._log(name, name)
            return hoster

        probed = {}
        for hoster_name, hoster in self._hosters.items():
            probed[hoster_name] = hoster.on_this_hoster()
            logger.debug(f"Probe for {hoster_name}: {'positive' if probed[hoster_name] else 'negative'}")

        matches = [n for n, found in probed.items() if found]
        if len(matches) > 1:
            self._log(None, None, probed, error="several hosters detected")
            raise MultipleProvidersDetected(matches)
        if not matches:
            message = (f"failed to guess the current host's hoster "
                       f"(none of {', '.join(self._hosters) or 'no hoster'} detected)")
            self._log(None, None, probed, error=message)
            raise NoProviderDetected(message)

        self._log(matches[0], None, probed)
        return self._hosters[matches[0]]

    def _log(self, provider, requested, probed=None, error=None) -> None:
        if self.structured_logger:
            self.structured_logger.log_provider_detection(
                provider=provider, requested=requested, probed=probed, error_message=error)


def build_registry(cfg: Config, structured_logger: Optional[StructuredEventLogger] = None) -> HosterRegistry:
    """Registry of every supported hoster, constructed for this invocation."""
    registry = HosterRegistry(structured_logger)
    registry.register(AWSHoster.name, AWSHoster(cfg, structured_logger))
    registry.register(GCEHoster.name, GCEHoster(cfg, structured_logger))
    return registry
