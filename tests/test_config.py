"""Tests for CrawlerConfig loading and saving."""

import json

import yaml

from supplier_crawler.config import CrawlerConfig, load_config


class TestCrawlerConfig:
    """Test cases for CrawlerConfig."""

    def test_defaults(self):
        config = CrawlerConfig()
        assert config.max_instances == 2
        assert config.max_pages_per_instance == 5
        assert config.navigation_retries == 3
        assert config.solver_max_attempts == 4
        assert config.extraction_batch_size == 5
        assert config.keyword_retries == 3

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CRAWLER_MAX_INSTANCES", "4")
        monkeypatch.setenv("CRAWLER_NAVIGATION_BASE_DELAY", "0.5")
        monkeypatch.setenv("CRAWLER_SEARCH_ORIGIN", "https://m.example.com")
        monkeypatch.setenv("CRAWLER_KEYWORD_RETRIES", "not-a-number")

        config = CrawlerConfig.from_env()

        assert config.max_instances == 4
        assert config.navigation_base_delay == 0.5
        assert config.search_origin == "https://m.example.com"
        assert config.keyword_retries == 3

    def test_from_json_file_with_section(self, tmp_path):
        path = tmp_path / "crawler.json"
        path.write_text(json.dumps({"crawler": {"max_pages_per_instance": 3, "bogus": 1}}))

        config = CrawlerConfig.from_file(path)

        assert config.max_pages_per_instance == 3
        assert not hasattr(config, "bogus")

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "crawler.yaml"
        path.write_text(yaml.safe_dump({"extraction_batch_size": 8, "solver_max_attempts": 2}))

        config = CrawlerConfig.from_file(path)

        assert config.extraction_batch_size == 8
        assert config.solver_max_attempts == 2

    def test_missing_file_gives_defaults(self, tmp_path):
        config = CrawlerConfig.from_file(tmp_path / "absent.yaml")
        assert config.to_dict() == CrawlerConfig().to_dict()

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "saved.json"
        CrawlerConfig(max_instances=1, keyword_backoff_seconds=5.0).save_to_file(path)

        data = json.loads(path.read_text())
        assert data["crawler"]["max_instances"] == 1

        reloaded = CrawlerConfig.from_file(path)
        assert reloaded.max_instances == 1
        assert reloaded.keyword_backoff_seconds == 5.0

    def test_load_config_prefers_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CRAWLER_MAX_INSTANCES", "7")
        path = tmp_path / "crawler.json"
        path.write_text(json.dumps({"max_instances": 3}))

        assert load_config(str(path)).max_instances == 3
        assert load_config().max_instances == 7
