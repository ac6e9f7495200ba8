"""
Profile provider protocol and an in-memory implementation.

Providers return raw records shaped like the remote store's rows: a profile
mapping with snake_case keys, document records with ``category`` and
``status``, and task records with ``is_completed``, ``due_date`` and an
optional ``rule_id``.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

ProfileRecord = Dict[str, Any]
DocumentRecord = Dict[str, Any]
TaskRecord = Dict[str, Any]


@runtime_checkable
class ProfileProvider(Protocol):
    """Source of raw subject data."""

    async def fetch_profile(self, subject_id: str) -> Optional[ProfileRecord]:
        """
        Fetch the subject's profile.

        Args:
            subject_id: Subject identifier

        Returns:
            Profile record, or None when the subject is unknown
        """
        ...

    async def fetch_documents(self, subject_id: str) -> List[DocumentRecord]:
        """Fetch the subject's document records."""
        ...

    async def fetch_tasks(self, subject_id: str) -> List[TaskRecord]:
        """Fetch the subject's existing task records."""
        ...


class InMemoryProfileProvider:
    """Dictionary-backed provider for tests and command-line use."""

    def __init__(
        self,
        profiles: Optional[Dict[str, ProfileRecord]] = None,
        documents: Optional[Dict[str, List[DocumentRecord]]] = None,
        tasks: Optional[Dict[str, List[TaskRecord]]] = None,
    ) -> None:
        self.profiles: Dict[str, ProfileRecord] = dict(profiles or {})
        self.documents: Dict[str, List[DocumentRecord]] = dict(documents or {})
        self.tasks: Dict[str, List[TaskRecord]] = dict(tasks or {})

    async def fetch_profile(self, subject_id: str) -> Optional[ProfileRecord]:
        return self.profiles.get(subject_id)

    async def fetch_documents(self, subject_id: str) -> List[DocumentRecord]:
        return list(self.documents.get(subject_id, []))

    async def fetch_tasks(self, subject_id: str) -> List[TaskRecord]:
        return list(self.tasks.get(subject_id, []))

    def add_subject(
        self,
        subject_id: str,
        profile: ProfileRecord,
        documents: Optional[List[DocumentRecord]] = None,
        tasks: Optional[List[TaskRecord]] = None,
    ) -> None:
        self.profiles[subject_id] = profile
        self.documents[subject_id] = list(documents or [])
        self.tasks[subject_id] = list(tasks or [])

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "InMemoryProfileProvider":
        """
        Load a single subject from a JSON file.

        The file holds ``{"profile": {...}, "documents": [...], "tasks": [...]}``;
        the subject id is ``profile["id"]`` or the file stem.
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)

        profile = payload.get("profile", payload)
        subject_id = str(profile.get("id") or path.stem)
        provider = cls()
        provider.add_subject(
            subject_id,
            profile,
            documents=payload.get("documents", []),
            tasks=payload.get("tasks", []),
        )
        return provider
