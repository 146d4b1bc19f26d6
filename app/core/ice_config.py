"""ICE server configuration loader from YAML files.

Supports TURN credentials and multi-URL server entries that are awkward to
express in a single environment variable.

Example file:
    ice_servers:
      - urls: stun:stun.relay.metered.ca:80
      - urls:
          - turn:global.relay.metered.ca:80
          - turns:global.relay.metered.ca:443
        username: user
        credential: secret
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog
import yaml
from aiortc import RTCIceServer


logger = structlog.get_logger(__name__)


@dataclass
class IceServer:
    """One STUN/TURN server entry."""

    urls: list[str]
    username: Optional[str] = None
    credential: Optional[str] = None

    def to_rtc(self) -> RTCIceServer:
        """Convert to the aiortc representation."""
        return RTCIceServer(urls=self.urls, username=self.username, credential=self.credential)


@dataclass
class IceConfig:
    """ICE servers handed to every peer leg.

    Fields:
        servers: STUN/TURN servers, in preference order
    """

    servers: list[IceServer] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, file_path: str | Path) -> "IceConfig":
        """Load ICE servers from YAML file.

        Args:
            file_path: Path to YAML configuration file

        Returns:
            IceConfig instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If YAML file is invalid
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"ICE config file not found: {file_path}")

        logger.info("Loading ICE config from YAML", file_path=str(file_path))

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML file: {e}")

        if not isinstance(data, dict):
            raise ValueError("YAML file must contain a dictionary")

        entries = data.get("ice_servers")
        if not entries or not isinstance(entries, list):
            raise ValueError("'ice_servers' must be a non-empty list")

        servers = [cls._parse_entry(entry, index) for index, entry in enumerate(entries)]

        logger.info(
            "ICE config loaded successfully",
            servers=len(servers),
            turn=sum(1 for s in servers if s.credential)
        )
        return cls(servers=servers)

    @classmethod
    def from_yaml_or_default(cls, file_path: Optional[str | Path], stun_url: str) -> "IceConfig":
        """Load ICE config from YAML file, or fall back to a single STUN server.

        FAIL-FAST STRATEGY: If file_path is specified but loading fails, raises exception.

        Args:
            file_path: Optional path to YAML configuration file
            stun_url: STUN server used when no file is specified

        Returns:
            IceConfig instance
        """
        if not file_path:
            logger.info("No ICE config file specified, using STUN server", stun_url=stun_url)
            return cls(servers=[IceServer(urls=[stun_url])])

        return cls.from_yaml(file_path)

    @staticmethod
    def _parse_entry(entry: object, index: int) -> IceServer:
        if not isinstance(entry, dict):
            raise ValueError(f"ice_servers[{index}] must be a mapping")

        urls = entry.get("urls")
        if isinstance(urls, str):
            urls = [urls]
        if not urls or not all(isinstance(url, str) for url in urls):
            raise ValueError(f"ice_servers[{index}].urls must be a string or list of strings")

        return IceServer(
            urls=list(urls),
            username=entry.get("username"),
            credential=entry.get("credential"),
        )

    def to_rtc_servers(self) -> list[RTCIceServer]:
        """Convert every entry for RTCConfiguration."""
        return [server.to_rtc() for server in self.servers]
