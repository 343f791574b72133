"""
Tests for the launch options service - marker file loading and the enablement gate.
"""
import pytest

from spa_proxy.config import AppConfig, get_config
from spa_proxy.services.launch_options import (
    ForwardingOptions,
    LaunchOptions,
    load_launch_options,
    resolve_forwarding_options,
)
from tests.conftest import DESTINATION, write_marker


class TestLoadLaunchOptions:
    """Tests for load_launch_options function."""

    def test_loads_all_fields(self, marker_file):
        """Should read every field of the SpaProxyServer section."""
        options = load_launch_options(marker_file)

        assert options == LaunchOptions(
            client_url=DESTINATION,
            launch_command="npm run dev",
            working_directory="ClientApp",
            max_timeout_seconds=60,
        )

    def test_optional_fields_default(self, tmp_path):
        """Only ClientUrl is required."""
        path = write_marker(tmp_path / "spa.proxy.json", {"ClientUrl": "https://localhost:44410"})

        options = load_launch_options(path)

        assert options.client_url == "https://localhost:44410"
        assert options.launch_command is None
        assert options.working_directory is None
        assert options.max_timeout_seconds == 120

    def test_strips_trailing_slash(self, tmp_path):
        """Client URL is normalized so paths can be appended."""
        path = write_marker(tmp_path / "spa.proxy.json", {"ClientUrl": "http://localhost:5173/"})

        assert load_launch_options(path).client_url == "http://localhost:5173"

    def test_missing_file_raises(self, tmp_path):
        """Should raise ValueError for a missing file."""
        with pytest.raises(ValueError, match="not found"):
            load_launch_options(str(tmp_path / "missing.json"))

    def test_invalid_json_raises(self, tmp_path):
        """Should raise ValueError for invalid JSON."""
        path = tmp_path / "spa.proxy.json"
        path.write_text("{not json")

        with pytest.raises(ValueError, match="Invalid JSON"):
            load_launch_options(str(path))

    def test_missing_section_raises(self, tmp_path):
        """Should raise ValueError when SpaProxyServer is absent."""
        path = tmp_path / "spa.proxy.json"
        path.write_text('{"Other": {}}')

        with pytest.raises(ValueError, match="SpaProxyServer"):
            load_launch_options(str(path))

    def test_missing_client_url_raises(self, tmp_path):
        """Should raise ValueError when ClientUrl is absent."""
        path = write_marker(tmp_path / "spa.proxy.json", {"LaunchCommand": "npm start"})

        with pytest.raises(ValueError, match="ClientUrl"):
            load_launch_options(path)

    @pytest.mark.parametrize("url", ["localhost:5173", "ftp://localhost", "/relative"])
    def test_rejects_non_http_client_url(self, tmp_path, url):
        """ClientUrl must be an absolute http(s) URL."""
        path = write_marker(tmp_path / "spa.proxy.json", {"ClientUrl": url})

        with pytest.raises(ValueError, match="absolute"):
            load_launch_options(path)

    def test_invalid_max_timeout_raises(self, tmp_path):
        """MaxTimeoutInSeconds must be an integer."""
        path = write_marker(
            tmp_path / "spa.proxy.json",
            {"ClientUrl": DESTINATION, "MaxTimeoutInSeconds": "soon"}
        )

        with pytest.raises(ValueError, match="MaxTimeoutInSeconds"):
            load_launch_options(path)


class TestResolveForwardingOptions:
    """Tests for the startup enablement gate."""

    def test_disabled_without_marker(self, tmp_path):
        """No marker file means forwarding is off, not an error."""
        config = AppConfig(spa_proxy_marker_file=str(tmp_path / "spa.proxy.json"))

        assert resolve_forwarding_options(config) is None

    def test_enabled_with_marker(self, marker_file):
        """Marker present: destination comes from ClientUrl, timeout defaults to 100s."""
        config = AppConfig(spa_proxy_marker_file=marker_file)

        assert resolve_forwarding_options(config) == ForwardingOptions(
            destination=DESTINATION,
            timeout=100.0,
        )

    def test_client_url_override(self, marker_file):
        """Configured client URL wins over the marker's."""
        config = AppConfig(
            spa_proxy_marker_file=marker_file,
            spa_proxy_client_url="http://127.0.0.1:3000/",
        )

        assert resolve_forwarding_options(config).destination == "http://127.0.0.1:3000"

    def test_custom_timeout(self, marker_file):
        """Timeout is exposed as a setting."""
        config = AppConfig(spa_proxy_marker_file=marker_file, spa_proxy_timeout=5)

        assert resolve_forwarding_options(config).timeout == 5.0

    def test_non_positive_timeout_raises(self, marker_file):
        """A zero timeout would fail every forward."""
        config = AppConfig(spa_proxy_marker_file=marker_file, spa_proxy_timeout=0)

        with pytest.raises(ValueError, match="positive"):
            resolve_forwarding_options(config)

    def test_invalid_marker_raises(self, tmp_path):
        """A marker that exists but is broken is a startup error."""
        path = tmp_path / "spa.proxy.json"
        path.write_text("[]")
        config = AppConfig(spa_proxy_marker_file=str(path))

        with pytest.raises(ValueError):
            resolve_forwarding_options(config)

    def test_reads_environment(self, mock_env, marker_file, monkeypatch):
        """Settings come from environment variables."""
        monkeypatch.setenv("SPA_PROXY_TIMEOUT", "30")

        options = resolve_forwarding_options(get_config())

        assert options == ForwardingOptions(destination=DESTINATION, timeout=30.0)
