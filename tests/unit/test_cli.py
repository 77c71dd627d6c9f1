"""Unit tests for the command-line interface."""

import json
import re

import pytest
from typer.testing import CliRunner

from lorekeeper.cli import app

runner = CliRunner()


@pytest.fixture
def db(tmp_path):
    path = tmp_path / "cli.db"
    result = runner.invoke(app, ["--db", str(path), "init"])
    assert result.exit_code == 0, result.output
    return path


def invoke(db, *args):
    return runner.invoke(app, ["--db", str(db), *args])


class TestMemoryCommands:
    """Tests for memory management commands."""

    def test_init_is_repeatable(self, db):
        result = invoke(db, "init")
        assert result.exit_code == 0
        assert "Database ready" in result.output
        assert "templates installed" not in result.output

    def test_seed_templates(self, db):
        result = invoke(db, "seed-templates")
        assert result.exit_code == 0
        assert "Default templates installed (5)" in result.output

    def test_remember_and_list(self, db):
        result = invoke(db, "remember", "character", "c1", "Brave", "--tag", "trait")
        assert result.exit_code == 0, result.output
        assert "version 1" in result.output

        result = invoke(db, "memories", "character", "c1")
        assert result.exit_code == 0
        assert "Brave" in result.output

    def test_history_and_stats(self, db):
        invoke(db, "remember", "region", "r1", "Misty")
        invoke(db, "remember", "region", "r1", "Flooded", "--kind", "soft")

        history = invoke(db, "history", "region", "r1")
        assert "Misty" in history.output
        assert "Flooded" in history.output

        stats = invoke(db, "stats", "region", "r1")
        assert stats.exit_code == 0
        assert "Total versions" in stats.output

    def test_update_memory(self, db):
        result = invoke(db, "remember", "world", "w1", "Calm")
        memory_id = re.search(r"mem_[0-9a-f\-]+", result.output).group(0)

        result = invoke(db, "update-memory", memory_id, "--text", "Stormy")
        assert result.exit_code == 0, result.output

        result = invoke(db, "memories", "world", "w1")
        assert "Stormy" in result.output

    def test_no_memories(self, db):
        result = invoke(db, "memories", "character", "nobody")
        assert "No memories found" in result.output

    def test_invalid_entity_type(self, db):
        result = invoke(db, "remember", "planet", "p1", "Red")
        assert result.exit_code == 1
        assert "Invalid entity type" in result.output

    def test_update_missing_memory(self, db):
        result = invoke(db, "update-memory", "mem_00000000-0000-0000-0000-000000000000", "--text", "x")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestLoadAndContext:
    """Tests for seeding universe data and inspecting context."""

    def test_load_then_context(self, db, tmp_path):
        universe = tmp_path / "universe.json"
        universe.write_text(
            json.dumps(
                {
                    "worlds": [{"id": "w1", "name": "Eldoria", "world_type": "fantasy"}],
                    "characters": [{"id": "c1", "world_id": "w1", "name": "Aria"}],
                    "tags": [{"name": "battle", "category": "plot"}],
                }
            )
        )

        result = invoke(db, "load", str(universe))
        assert result.exit_code == 0, result.output
        assert "1 worlds" in result.output

        result = invoke(db, "context", "w1", "--character", "c1")
        assert result.exit_code == 0, result.output
        assert "Eldoria (fantasy)" in result.output
        assert "Aria" in result.output
