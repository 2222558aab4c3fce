"""
Candidate record store.

The row database that owns processes and candidates lives outside this
package. Everything here talks to it through the CandidateStore protocol;
two local implementations are provided:

- InMemoryCandidateStore: dictionaries, used by tests and embedding code.
- JsonFileCandidateStore: the same, persisted to a JSON workspace file after
  every write. The CLI uses it as its local record store.

Stores hand out immutable model instances. Every write replaces the stored
instance with an updated copy.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from ats_docgate.models import Attachment, Candidate, CandidateHistory, Process

logger = structlog.get_logger()


class RecordNotFoundError(LookupError):
    """A process or candidate id is not in the store."""


class InvalidStageError(ValueError):
    """A write would put a candidate in a stage its process does not have."""


@runtime_checkable
class CandidateStore(Protocol):
    """Async access to process and candidate records."""

    async def get_process(self, process_id: str) -> Process | None: ...

    async def list_processes(self) -> list[Process]: ...

    async def get_candidate(self, candidate_id: str) -> Candidate | None: ...

    async def list_candidates(self, process_id: str) -> list[Candidate]: ...

    async def list_attachments(self, candidate_id: str) -> list[Attachment]: ...

    async def add_attachment(self, candidate_id: str, attachment: Attachment) -> Candidate: ...

    async def move_candidate(
        self,
        candidate_id: str,
        stage_id: str,
        moved_by: str,
        moved_at: datetime,
    ) -> Candidate: ...

    async def set_candidate_folder(
        self, candidate_id: str, folder_id: str, folder_name: str
    ) -> Candidate: ...

    async def set_process_folder(
        self, process_id: str, folder_id: str, folder_name: str
    ) -> Process: ...


class InMemoryCandidateStore:
    """CandidateStore backed by dictionaries (insertion ordered)."""

    def __init__(
        self,
        processes: list[Process] | None = None,
        candidates: list[Candidate] | None = None,
    ):
        self._processes: dict[str, Process] = {}
        self._candidates: dict[str, Candidate] = {}
        for process in processes or []:
            self._processes[process.id] = process
        for candidate in candidates or []:
            self._candidates[candidate.id] = candidate

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_process(self, process: Process) -> Process:
        self._processes[process.id] = process
        self._persist()
        return process

    def add_candidate(self, candidate: Candidate) -> Candidate:
        """Add a candidate to an existing process.

        Raises:
            RecordNotFoundError: If the candidate's process is unknown.
            InvalidStageError: If its stage is not one of the process's stages.
        """
        process = self._require_process(candidate.process_id)
        if not process.has_stage(candidate.stage_id):
            raise InvalidStageError(
                f"Stage '{candidate.stage_id}' does not belong to process '{process.id}'"
            )
        self._candidates[candidate.id] = candidate
        self._persist()
        return candidate

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_process(self, process_id: str) -> Process | None:
        return self._processes.get(process_id)

    async def list_processes(self) -> list[Process]:
        return list(self._processes.values())

    async def get_candidate(self, candidate_id: str) -> Candidate | None:
        return self._candidates.get(candidate_id)

    async def list_candidates(self, process_id: str) -> list[Candidate]:
        return [c for c in self._candidates.values() if c.process_id == process_id]

    async def list_attachments(self, candidate_id: str) -> list[Attachment]:
        return list(self._require_candidate(candidate_id).attachments)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add_attachment(self, candidate_id: str, attachment: Attachment) -> Candidate:
        candidate = self._require_candidate(candidate_id)
        updated = candidate.model_copy(
            update={"attachments": [*candidate.attachments, attachment]}
        )
        return self._replace_candidate(updated)

    async def move_candidate(
        self,
        candidate_id: str,
        stage_id: str,
        moved_by: str,
        moved_at: datetime | None = None,
    ) -> Candidate:
        """Move a candidate to another stage of its process and record the move.

        Raises:
            RecordNotFoundError: If the candidate or its process is unknown.
            InvalidStageError: If the stage is not part of the candidate's process.
        """
        candidate = self._require_candidate(candidate_id)
        process = self._require_process(candidate.process_id)
        if not process.has_stage(stage_id):
            raise InvalidStageError(
                f"Stage '{stage_id}' does not belong to process '{process.id}'"
            )

        entry = CandidateHistory(
            stage_id=stage_id,
            moved_at=moved_at or datetime.now(timezone.utc),
            moved_by=moved_by or "System",
        )
        updated = candidate.model_copy(
            update={"stage_id": stage_id, "history": [*candidate.history, entry]}
        )
        return self._replace_candidate(updated)

    async def set_candidate_folder(
        self, candidate_id: str, folder_id: str, folder_name: str
    ) -> Candidate:
        candidate = self._require_candidate(candidate_id)
        updated = candidate.model_copy(
            update={"drive_folder_id": folder_id, "drive_folder_name": folder_name}
        )
        return self._replace_candidate(updated)

    async def set_process_folder(
        self, process_id: str, folder_id: str, folder_name: str
    ) -> Process:
        process = self._require_process(process_id)
        updated = process.model_copy(
            update={"drive_folder_id": folder_id, "drive_folder_name": folder_name}
        )
        self._processes[process_id] = updated
        self._persist()
        return updated

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_process(self, process_id: str) -> Process:
        process = self._processes.get(process_id)
        if process is None:
            raise RecordNotFoundError(f"Process '{process_id}' not found")
        return process

    def _require_candidate(self, candidate_id: str) -> Candidate:
        candidate = self._candidates.get(candidate_id)
        if candidate is None:
            raise RecordNotFoundError(f"Candidate '{candidate_id}' not found")
        return candidate

    def _replace_candidate(self, candidate: Candidate) -> Candidate:
        self._candidates[candidate.id] = candidate
        self._persist()
        return candidate

    def _persist(self) -> None:
        """Hook for persistent subclasses."""


class JsonFileCandidateStore(InMemoryCandidateStore):
    """InMemoryCandidateStore that saves itself to a JSON file on every write.

    File layout::

        {"processes": [<Process>, ...], "candidates": [<Candidate>, ...]}
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._loading = True
        super().__init__()
        if self.path.exists():
            self._load()
        self._loading = False

    def _load(self) -> None:
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)

        for raw in data.get("processes", []):
            process = Process.model_validate(raw)
            self._processes[process.id] = process
        for raw in data.get("candidates", []):
            candidate = Candidate.model_validate(raw)
            self._candidates[candidate.id] = candidate

        logger.info(
            "workspace_loaded",
            path=str(self.path),
            processes=len(self._processes),
            candidates=len(self._candidates),
        )

    def _persist(self) -> None:
        if self._loading:
            return

        data = {
            "processes": [p.model_dump(mode="json") for p in self._processes.values()],
            "candidates": [c.model_dump(mode="json") for c in self._candidates.values()],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)
