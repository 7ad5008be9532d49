"""Project resolution - find-or-create by name."""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from .models import Project, utcnow
from .rounding import ensure_utc
from .storage import LocalStore

__all__ = ["ProjectResolver"]

logger = logging.getLogger(__name__)


class ProjectResolver:
    """Resolves typed project names to stored projects.

    Not safe against two threads creating the same new name at once; the
    loser of such a race leaves a duplicate project behind.
    """

    def __init__(self, store: LocalStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or utcnow

    def resolve_or_create(self, name: Optional[str]) -> Optional[Project]:
        """Return the project with this exact name, creating it if needed.

        Surrounding whitespace is ignored. A blank name resolves to None so
        the session stays without a project.
        """
        name = (name or "").strip()
        if not name:
            return None

        existing = self.store.find_project_by_name(name)
        if existing is not None:
            return existing

        now = ensure_utc(self._clock())
        project = Project(name=name, created_at=now, updated_at=now)
        self.store.insert_project(project)
        logger.info(f"Created project '{name}' ({project.id})")
        return project

    def get(self, project_id: Optional[uuid.UUID]) -> Optional[Project]:
        return self.store.get_project(project_id)

    def all(self) -> list[Project]:
        return self.store.all_projects()
