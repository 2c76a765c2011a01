"""Tests for project configuration loading."""

import pytest
import yaml

from sources.loader import ProjectConfig, ProjectLoader, load_project_file
from sources.models import GitHubSourceData, MotifSourceData, SourceType


def write_project(directory, name, data):
    path = directory / f"{name}.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return path


class TestProjectConfig:
    def test_from_dict(self):
        config = ProjectConfig.from_dict({
            "id": "acme",
            "include": ["docs/**"],
            "exclude": ["docs/drafts/**"],
            "sources": [
                {"id": "gh-1", "type": "github", "data": {"url": "https://github.com/acme/docs", "branch": "main"}},
                {"id": "motif-1", "type": "motif", "data": {"projectDomain": "acme"}},
                {"id": "up-1", "type": "file-upload"},
            ]
        })

        assert config.include == ["docs/**"]
        assert config.exclude == ["docs/drafts/**"]
        assert config.custom_page_fetcher is False
        assert [s.type for s in config.sources] == [SourceType.GITHUB, SourceType.MOTIF, SourceType.FILE_UPLOAD]
        assert config.sources[0].data == GitHubSourceData("https://github.com/acme/docs", "main")
        assert config.sources[1].data == MotifSourceData("acme")

    def test_include_defaults_to_everything(self):
        assert ProjectConfig.from_dict({"id": "acme"}).include == ['**']

    def test_duplicate_source_ids(self):
        with pytest.raises(ValueError, match="Duplicate source ids"):
            ProjectConfig.from_dict({
                "id": "acme",
                "sources": [
                    {"id": "s", "type": "file-upload"},
                    {"id": "s", "type": "api-upload"},
                ]
            })

    def test_round_trip_dict(self):
        data = {
            "id": "acme",
            "include": ["**"],
            "exclude": [],
            "custom_page_fetcher": True,
            "sources": [{"id": "web-1", "type": "website", "data": {"url": "https://docs.acme.com"}}]
        }
        assert ProjectConfig.from_dict(data).to_dict() == data


class TestProjectLoader:
    def test_load_project(self, tmp_path):
        write_project(tmp_path, "acme", {
            "sources": [{"id": "web-1", "type": "website", "data": {"url": "https://docs.acme.com"}}]
        })

        config = ProjectLoader(tmp_path).load_project("acme")

        assert config.id == "acme"
        assert config.sources[0].id == "web-1"

    def test_missing_project(self, tmp_path):
        assert ProjectLoader(tmp_path).load_project("nope") is None

    def test_cached_until_modified(self, tmp_path):
        write_project(tmp_path, "acme", {"id": "acme"})
        loader = ProjectLoader(tmp_path)

        assert loader.load_project("acme") is loader.load_project("acme")
        loader.reload_cache()
        assert loader._cache == {}

    def test_invalid_files(self, tmp_path):
        empty = tmp_path / "empty.yaml"
        empty.write_text("")
        broken = tmp_path / "broken.yaml"
        broken.write_text("id: [unclosed")
        bad_source = write_project(tmp_path, "bad", {"sources": [{"id": "gh", "type": "github", "data": {}}]})

        assert load_project_file(empty) is None
        assert load_project_file(broken) is None
        assert load_project_file(bad_source) is None
