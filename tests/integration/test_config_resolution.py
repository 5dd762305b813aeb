"""Integration tests resolving config files from disk and running them."""

import json
import textwrap

import pytest
import yaml

from pagegather.config.constants import ENVIRONMENT_ENV_VAR
from pagegather.config.resolver import get_config_display_string, initialize_config
from pagegather.gather.driver import Driver
from pagegather.gather.navigation_runner import navigation_gather
from pagegather.models.config import GatherMode, LoadFailureMode, ThrottlingMethod


URL = "https://example.com/"

CONFIG_YAML = """
extends: pagegather:default

settings:
  locale: de

artifacts:
  - id: Title
    collector: collectors/title.py:TitleCollector

navigations:
  - id: default
    artifacts:
      - DevtoolsLog
      - Title
  - id: warm
    load_failure_mode: warn
    pause_after_load_ms: 100
    artifacts:
      - Trace
"""

TITLE_COLLECTOR = """
from pagegather.gather.base_collector import BaseCollector
from pagegather.models.config import CollectorMeta, GatherMode


class TitleCollector(BaseCollector):
    meta = CollectorMeta(supported_modes=(GatherMode.NAVIGATION,), symbol="title")

    async def get_artifact(self, context):
        return {"url": context.url, "locale": context.settings.locale}
"""


@pytest.fixture
def config_file(tmp_path):
    """Config file with a collector next to it."""
    (tmp_path / "collectors").mkdir()
    (tmp_path / "collectors" / "title.py").write_text(textwrap.dedent(TITLE_COLLECTOR))
    config_path = tmp_path / "pagegather.yml"
    config_path.write_text(CONFIG_YAML)
    return config_path


def load(config_path):
    with open(config_path, 'r') as f:
        return yaml.safe_load(f)


class TestConfigFromFile:
    """Tests for resolving a config file that extends the default."""

    def test_resolution(self, config_file):
        config, warnings = initialize_config(
            GatherMode.NAVIGATION, load(config_file), {"config_path": str(config_file)}
        )

        assert warnings == []
        assert [a.id for a in config.artifacts] == ["DevtoolsLog", "Trace", "Title"]
        assert [n.id for n in config.navigations] == ["default", "warm"]
        assert config.navigations[0].artifact_ids == ["DevtoolsLog", "Title"]
        assert config.navigations[0].load_failure_mode == LoadFailureMode.FATAL
        assert config.navigations[1].load_failure_mode == LoadFailureMode.WARN
        assert config.artifacts[2].collector.path == "collectors/title.py:TitleCollector"
        assert config.settings.locale == "de"

    def test_environment_and_flags(self, config_file, monkeypatch):
        """Test that flags win over the selected environment, which wins over defaults."""
        monkeypatch.setenv(ENVIRONMENT_ENV_VAR, "test")

        config, _ = initialize_config(
            GatherMode.NAVIGATION,
            load(config_file),
            {"config_path": str(config_file), "max_wait_for_load": 20000},
        )

        assert config.settings.max_wait_for_fcp == 15000
        assert config.settings.max_wait_for_load == 20000
        assert config.settings.protocol_timeout_ms == 10000
        assert config.settings.locale == "de"

    def test_devtools_throttling_raises_quiet_windows(self, config_file):
        config, _ = initialize_config(
            GatherMode.NAVIGATION,
            load(config_file),
            {"config_path": str(config_file), "throttling_method": "devtools"},
        )

        assert config.settings.throttling_method == ThrottlingMethod.DEVTOOLS
        warm = config.navigations[1]
        assert warm.pause_after_load_ms == 5250
        assert warm.network_quiet_threshold_ms == 5250

    def test_timespan_mode(self, config_file):
        config, _ = initialize_config(
            GatherMode.TIMESPAN, load(config_file), {"config_path": str(config_file)}
        )

        assert [a.id for a in config.artifacts] == ["DevtoolsLog", "Trace"]
        assert config.navigations is None
        assert config.settings.gather_mode == GatherMode.TIMESPAN

    def test_display_string(self, config_file):
        config, _ = initialize_config(
            GatherMode.NAVIGATION, load(config_file), {"config_path": str(config_file)}
        )

        display = json.loads(get_config_display_string(config))

        assert display["artifacts"][2] == {"id": "Title", "collector": "collectors/title.py:TitleCollector"}
        assert display["navigations"][1]["artifacts"] == ["Trace"]
        assert display["settings"]["locale"] == "de"


class TestGatherFromFile:
    """Tests for running a config file end to end."""

    @pytest.mark.asyncio
    async def test_gather(self, config_file, transport, page_load):
        driver = Driver(transport=transport, protocol_timeout_ms=1000)

        result = await navigation_gather(
            URL,
            config=load(config_file),
            flags={"config_path": str(config_file)},
            driver=driver,
        )
        bundle = result.artifacts

        assert result.error is None
        assert set(bundle.artifacts) == {"DevtoolsLog", "Title", "Trace"}
        assert bundle["Title"] == {"url": URL, "locale": "de"}
        assert bundle.settings.locale == "de"
        assert bundle.gather_context.gather_mode == GatherMode.NAVIGATION
        assert [p["url"] for p in transport.params_for("Page.navigate")].count(URL) == 2
