"""Tests for ICE server configuration."""

from pathlib import Path

import pytest

from app.core.ice_config import IceConfig, IceServer


def write_yaml(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "ice.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestIceConfig:
    """Test loading ICE servers."""

    def test_default_stun(self) -> None:
        config = IceConfig.from_yaml_or_default(None, "stun:stun.relay.metered.ca:80")

        assert config.servers == [IceServer(urls=["stun:stun.relay.metered.ca:80"])]
        rtc = config.to_rtc_servers()
        assert rtc[0].urls == ["stun:stun.relay.metered.ca:80"]
        assert rtc[0].username is None

    def test_from_yaml(self, tmp_path: Path) -> None:
        """Test string and list urls with TURN credentials."""
        path = write_yaml(tmp_path, """
ice_servers:
  - urls: stun:stun.example.test:3478
  - urls:
      - turn:turn.example.test:80
      - turns:turn.example.test:443
    username: user
    credential: secret
""")

        config = IceConfig.from_yaml_or_default(str(path), "stun:ignored")

        assert len(config.servers) == 2
        assert config.servers[0].urls == ["stun:stun.example.test:3478"]
        turn = config.servers[1]
        assert turn.urls == ["turn:turn.example.test:80", "turns:turn.example.test:443"]
        assert turn.username == "user"
        assert turn.credential == "secret"
        assert config.to_rtc_servers()[1].credential == "secret"

    def test_missing_file_fails_fast(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            IceConfig.from_yaml_or_default(tmp_path / "missing.yaml", "stun:ignored")

    @pytest.mark.parametrize("content", [
        "just a string",
        "ice_servers: []",
        "ice_servers: {urls: stun:x}",
        "ice_servers:\n  - username: nobody",
        "ice_servers:\n  - urls: [1, 2]",
        "ice_servers:\n  - stun:x",
        "ice_servers: [unclosed",
    ])
    def test_invalid_yaml(self, tmp_path: Path, content: str) -> None:
        path = write_yaml(tmp_path, content)
        with pytest.raises(ValueError):
            IceConfig.from_yaml(path)
