"""Tests for Gridkeeper CLI commands."""

import json

import pytest
from click.testing import CliRunner

from gridkeeper.cli.main import cli


@pytest.fixture
def runner():
    return CliRunner()


class TestMetadataValidate:
    def test_validate_succeeds(self, runner):
        result = runner.invoke(cli, ["metadata", "validate"])
        assert result.exit_code == 0
        assert "All metadata is valid" in result.output

    def test_validate_shows_entities(self, runner):
        result = runner.invoke(cli, ["metadata", "validate"])
        assert "Loaded 5 entities" in result.output
        assert "Site" in result.output
        assert "reaches: vendor" in result.output

    def test_validate_reports_broken_schema(self, runner, tmp_path):
        entities = tmp_path / "entities"
        entities.mkdir()
        (entities / "thing.yaml").write_text("entity: Thing\nfields:\n  - name: x\n    type: Blob\n")
        result = runner.invoke(cli, ["metadata", "validate", "--path", str(tmp_path)])
        assert result.exit_code == 1
        assert "unknown type 'Blob'" in result.output

    def test_validate_empty_directory(self, runner, tmp_path):
        result = runner.invoke(cli, ["metadata", "validate", "--path", str(tmp_path)])
        assert result.exit_code == 1


class TestMetadataColumns:
    def test_columns(self, runner):
        result = runner.invoke(cli, ["metadata", "columns", "order"])
        assert result.exit_code == 0
        assert "client.name" in result.output
        assert "Enum(OrderStatus)" in result.output

    def test_columns_with_operators(self, runner):
        result = runner.invoke(cli, ["metadata", "columns", "site", "--operators"])
        assert "hasSome" in result.output
        assert "some, every, none" in result.output

    def test_unknown_entity(self, runner):
        result = runner.invoke(cli, ["metadata", "columns", "planet"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestQueryCompile:
    def test_compile_prunes_against_allow_list(self, runner):
        result = runner.invoke(
            cli,
            [
                "query", "compile", "site",
                "--allow", "website,costPrice,vendor.name",
                "--filter", json.dumps({"AND": [{"website": {"contains": "shop"}}, {"secretColumn": {"equals": 1}}]}),
                "--sort", json.dumps([{"costPrice": "desc"}]),
            ],
        )
        assert result.exit_code == 0
        descriptor = json.loads(result.output)
        assert descriptor["entity"] == "Site"
        assert descriptor["select"]["vendor"] == {"select": {"name": True}}
        assert descriptor["where"] == {"AND": [{"website": {"contains": "shop", "mode": "insensitive"}}]}
        assert descriptor["orderBy"] == [{"costPrice": "desc"}]

    def test_compile_search(self, runner):
        result = runner.invoke(
            cli, ["query", "compile", "site", "--columns", "website,remark", "--search", "acme"]
        )
        descriptor = json.loads(result.output)
        assert len(descriptor["where"]["OR"]) > 2

    def test_invalid_json(self, runner):
        result = runner.invoke(cli, ["query", "compile", "site", "--filter", "{nope"])
        assert result.exit_code == 2
        assert "invalid JSON" in result.output

    def test_unknown_entity(self, runner):
        result = runner.invoke(cli, ["query", "compile", "planet"])
        assert result.exit_code == 1


class TestServe:
    def test_serve_runs_app_factory(self, runner, monkeypatch):
        import uvicorn

        calls = []
        monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
        result = runner.invoke(cli, ["serve", "--port", "9001", "--log-level", "DEBUG"])

        assert result.exit_code == 0
        assert "http://127.0.0.1:9001" in result.output
        app, kwargs = calls[0]
        assert app == "gridkeeper.api.app:create_app"
        assert kwargs["factory"] is True
        assert kwargs["port"] == 9001
        assert kwargs["log_level"] == "debug"
        assert kwargs["reload"] is False

    def test_serve_reads_port_from_environment(self, runner, monkeypatch):
        import uvicorn

        calls = []
        monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append(kwargs))
        result = runner.invoke(cli, ["serve"], env={"GRIDKEEPER_PORT": "8123"})

        assert result.exit_code == 0
        assert calls[0]["port"] == 8123
