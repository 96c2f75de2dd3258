"""
Instance metadata clients.

Both supported providers expose a link-local metadata service that tells an
instance who it is (id, zone/region, project). It is used for two things:
detecting which provider we run on, and guessing identity fields the user
did not supply.

    - GCE: http://metadata.google.internal/computeMetadata/v1/, requests must
      carry "Metadata-Flavor: Google" and responses carry it back.
      Detection pings http://169.254.169.254 so it stays within its timeout
      on hosts where the metadata hostname does not resolve quickly.
    - EC2: IMDSv2 at http://169.254.169.254/latest/, a session token is first
      obtained with a PUT and then sent with every GET.
"""

import logging
import os
from typing import Optional

import requests

from .exceptions import ProviderAPIError

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))

PROBE_TIMEOUT = 2            # Seconds, environment detection
METADATA_TIMEOUT = 5         # Seconds, identity lookups


class GCEMetadata:
    """Client for the GCE metadata server."""

    DEFAULT_HOST = "metadata.google.internal"
    # Detection probes the link-local address, no DNS lookup of DEFAULT_HOST
    METADATA_IP = "169.254.169.254"
    FLAVOR_HEADER = {"Metadata-Flavor": "Google"}

    def __init__(self, session: Optional[requests.Session] = None, host: Optional[str] = None):
        self.session = session or requests.Session()
        self.host = host or os.getenv("GCE_METADATA_HOST", self.DEFAULT_HOST)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}/computeMetadata/v1/"

    def available(self) -> bool:
        """True when a GCE metadata server answers (we run on a GCE instance)."""
        probe_host = self.METADATA_IP if self.host == self.DEFAULT_HOST else self.host
        try:
            r = self.session.get(f"http://{probe_host}", headers=self.FLAVOR_HEADER, timeout=PROBE_TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.debug(f"GCE metadata server not reachable: {e}")
            return False
        return r.headers.get("Metadata-Flavor") == "Google"

    def get(self, path: str) -> str:
        try:
            r = self.session.get(self.base_url + path, headers=self.FLAVOR_HEADER, timeout=METADATA_TIMEOUT)
            r.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ProviderAPIError(f"Failed to read {path} from GCE instance metadata", cause=e) from e
        return r.text.strip()

    def project_id(self) -> str:
        return self.get("project/project-id")

    def instance_name(self) -> str:
        return self.get("instance/name")

    def zone(self) -> str:
        # Returned as projects/<number>/zones/<zone>
        return self.get("instance/zone").rsplit("/", 1)[-1]


class EC2Metadata:
    """Client for the EC2 instance metadata service (IMDSv2)."""

    BASE_URL = "http://169.254.169.254/latest/"
    TOKEN_TTL_SECONDS = 21600

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self._token: Optional[str] = None

    def _fetch_token(self, timeout: int) -> str:
        r = self.session.put(
            self.BASE_URL + "api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": str(self.TOKEN_TTL_SECONDS)},
            timeout=timeout,
        )
        r.raise_for_status()
        return r.text.strip()

    def available(self) -> bool:
        """True when the EC2 metadata service answers (we run on an EC2 instance)."""
        try:
            self._token = self._fetch_token(PROBE_TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.debug(f"EC2 metadata service not reachable: {e}")
            return False
        return bool(self._token)

    def get(self, path: str) -> str:
        try:
            if not self._token:
                self._token = self._fetch_token(METADATA_TIMEOUT)
            r = self.session.get(
                self.BASE_URL + "meta-data/" + path,
                headers={"X-aws-ec2-metadata-token": self._token},
                timeout=METADATA_TIMEOUT,
            )
            r.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ProviderAPIError(f"Failed to read {path} from EC2 instance metadata", cause=e) from e
        return r.text.strip()

    def instance_id(self) -> str:
        return self.get("instance-id")

    def region(self) -> str:
        return self.get("placement/region")
