"""Tests for project resolution."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

from commesse.projects import ProjectResolver
from commesse.storage import LocalStore


class TestProjectResolver:
    """Tests for ProjectResolver."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = LocalStore(db_path=Path(self.temp_dir) / "test.db")
        self.now = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
        self.resolver = ProjectResolver(self.store, clock=lambda: self.now)

    def teardown_method(self):
        self.store.close()

    def test_blank_name_resolves_to_none(self):
        """Test blank name resolves to none."""
        assert self.resolver.resolve_or_create(None) is None
        assert self.resolver.resolve_or_create("") is None
        assert self.resolver.resolve_or_create("   ") is None
        assert self.store.all_projects() == []

    def test_creates_new_project(self):
        """Test creates new project."""
        project = self.resolver.resolve_or_create("Acme")

        assert project.name == "Acme"
        assert project.created_at == self.now
        assert project.updated_at == self.now
        assert self.store.get_project(project.id) == project

    def test_returns_existing_project(self):
        """Test returns existing project."""
        first = self.resolver.resolve_or_create("Acme")
        second = self.resolver.resolve_or_create("  Acme ")

        assert second.id == first.id
        assert len(self.store.all_projects()) == 1

    def test_match_is_case_sensitive(self):
        """Test match is case sensitive."""
        self.resolver.resolve_or_create("Acme")
        self.resolver.resolve_or_create("ACME")

        assert sorted(p.name for p in self.resolver.all()) == ["ACME", "Acme"]

    def test_get(self):
        """Test looking up a project by id."""
        project = self.resolver.resolve_or_create("Acme")

        assert self.resolver.get(project.id) == project
        assert self.resolver.get(None) is None
