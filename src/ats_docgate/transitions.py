"""
Stage transitions: single and bulk candidate moves behind the stage gate.

One attempt runs through four phases:

    IDLE -> VALIDATING -> PARTITIONED -> COMMITTING -> IDLE

1. VALIDATING: every candidate in the move set has its attachments fetched
   fresh and evaluated against the target stage's gate. These checks run
   concurrently.
2. PARTITIONED: candidates are split into movable, unchanged (already in
   the target stage) and blocked.
3. COMMITTING: movable candidates are persisted one at a time, in the
   order they were selected. A failed write blocks that candidate only.
4. The board's candidate list is re-read from the store.

Movable candidates are committed even when others are blocked. Only one
attempt per board (process) runs at a time; a second attempt arriving
meanwhile is ignored, not queued.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from ats_docgate.models import Attachment, Candidate, Process, Stage
from ats_docgate.stage_gate import StageGate, category_label
from ats_docgate.store import CandidateStore

logger = structlog.get_logger()

AttachmentSource = Callable[[Candidate], Awaitable[list[Attachment]]]


class MovePhase(str, Enum):
    """Lifecycle of one transition attempt on a board."""
    IDLE = "idle"
    VALIDATING = "validating"
    PARTITIONED = "partitioned"
    COMMITTING = "committing"


class BlockReason(str, Enum):
    """Why a candidate was not moved."""
    MISSING_DOCUMENTS = "missing_documents"
    VALIDATION_ERROR = "validation_error"
    WRONG_PROCESS = "wrong_process"
    NOT_FOUND = "not_found"
    COMMIT_FAILED = "commit_failed"


class UnknownStageError(ValueError):
    """The target stage does not belong to the board's process."""


class UnknownProcessError(LookupError):
    """The board's process is not in the store."""


@dataclass(frozen=True)
class BlockedCandidate:
    """A candidate left in place, with the reason.

    Attributes:
        candidate_id: Candidate id.
        candidate_name: Display name (the id when the candidate is unknown).
        reason: Why the move was refused.
        missing_category_ids: Required category ids with no attachment.
        missing_categories: Display names of the missing categories.
        detail: Error text for validation and commit failures.
    """

    candidate_id: str
    candidate_name: str
    reason: BlockReason
    missing_category_ids: list[str] = field(default_factory=list)
    missing_categories: list[str] = field(default_factory=list)
    detail: str | None = None

    def describe(self) -> str:
        if self.reason is BlockReason.MISSING_DOCUMENTS:
            return f"{self.candidate_name} (missing: {', '.join(self.missing_categories)})"
        if self.reason is BlockReason.WRONG_PROCESS:
            return f"{self.candidate_name} (belongs to another process)"
        if self.reason is BlockReason.NOT_FOUND:
            return f"{self.candidate_name} (not found)"
        label = self.reason.value.replace("_", " ")
        if self.detail:
            return f"{self.candidate_name} ({label}: {self.detail})"
        return f"{self.candidate_name} ({label})"


@dataclass
class MoveResult:
    """Outcome of one transition attempt.

    Attributes:
        process_id: Board the attempt ran on.
        target_stage_id: Requested stage.
        moved: Ids persisted into the target stage, in commit order.
        blocked: Candidates left in place.
        unchanged: Ids that were already in the target stage.
        ignored: True if another attempt on the board was in progress.
        candidates: The board's candidate list re-read after the commit.
    """

    process_id: str | None
    target_stage_id: str
    moved: list[str] = field(default_factory=list)
    blocked: list[BlockedCandidate] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    ignored: bool = False
    candidates: list[Candidate] | None = None

    @property
    def success(self) -> bool:
        """True when the attempt ran and nothing was blocked."""
        return not self.ignored and not self.blocked

    @property
    def partial(self) -> bool:
        return bool(self.moved) and bool(self.blocked)

    @property
    def missing_categories(self) -> list[str]:
        """Union of missing category names over all blocked candidates."""
        union: list[str] = []
        for blocked in self.blocked:
            for name in blocked.missing_categories:
                if name not in union:
                    union.append(name)
        return union

    @property
    def failure_message(self) -> str | None:
        """One message naming every blocked candidate, or None."""
        if not self.blocked:
            return None

        count = len(self.blocked)
        noun = "candidate" if count == 1 else "candidates"
        message = f"Cannot move {count} {noun}: " + "; ".join(b.describe() for b in self.blocked)
        if self.missing_categories:
            message += f". Missing documents: {', '.join(self.missing_categories)}"
        return message


class BoardSelection:
    """Ordered multi-select set of candidate ids on a board."""

    def __init__(self, candidate_ids: Iterable[str] = ()):
        self._ids: dict[str, None] = dict.fromkeys(candidate_ids)

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    @property
    def ids(self) -> list[str]:
        return list(self._ids)

    def add(self, candidate_id: str) -> None:
        self._ids.setdefault(candidate_id, None)

    def remove(self, candidate_id: str) -> None:
        self._ids.pop(candidate_id, None)

    def toggle(self, candidate_id: str) -> bool:
        """Flip membership; returns True if the id is now selected."""
        if candidate_id in self._ids:
            del self._ids[candidate_id]
            return False
        self._ids[candidate_id] = None
        return True

    def clear(self) -> None:
        self._ids.clear()

    def resolve_move_set(self, dropped_id: str) -> list[str]:
        """Candidates moved by dropping ``dropped_id``.

        Dropping a selected candidate moves the whole selection; dropping an
        unselected one moves only that candidate.
        """
        if dropped_id in self._ids:
            return list(self._ids)
        return [dropped_id]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransitionCoordinator:
    """Validates and commits candidate stage moves for every board.

    Args:
        store: Record store holding processes and candidates.
        attachment_source: Coroutine returning a candidate's authoritative
            attachments. Defaults to the store's attachment list.
        clock: Timestamp source for history entries.
    """

    def __init__(
        self,
        store: CandidateStore,
        attachment_source: AttachmentSource | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.attachment_source = attachment_source or self._store_attachments
        self.clock = clock
        self._phases: dict[str, MovePhase] = {}

    def phase(self, process_id: str) -> MovePhase:
        """Current phase of the board for ``process_id``."""
        return self._phases.get(process_id, MovePhase.IDLE)

    def is_busy(self, process_id: str) -> bool:
        return self.phase(process_id) is not MovePhase.IDLE

    async def _store_attachments(self, candidate: Candidate) -> list[Attachment]:
        return await self.store.list_attachments(candidate.id)

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def drop(
        self,
        candidate_id: str,
        target_stage_id: str,
        acting_user: str,
        selection: BoardSelection | None = None,
        process_id: str | None = None,
    ) -> MoveResult:
        """Handle a candidate dropped on a stage column.

        The selection is cleared once a bulk move has been committed, even
        a partial one. It is kept when the attempt was ignored.
        """
        bulk = selection is not None and candidate_id in selection
        move_set = selection.resolve_move_set(candidate_id) if selection else [candidate_id]

        result = await self.attempt_move(move_set, target_stage_id, acting_user, process_id)

        if bulk and selection is not None and not result.ignored:
            selection.clear()
        return result

    async def attempt_move(
        self,
        candidate_ids: Sequence[str],
        target_stage_id: str,
        acting_user: str = "System",
        process_id: str | None = None,
    ) -> MoveResult:
        """Validate and commit a move of one or more candidates.

        Args:
            candidate_ids: Candidates to move, in selection order. Duplicates
                are dropped.
            target_stage_id: Stage to move them into.
            acting_user: Recorded in every history entry.
            process_id: Board the move happens on. Derived from the first
                known candidate when omitted.

        Returns:
            MoveResult with moved, blocked and unchanged candidates.

        Raises:
            UnknownStageError: If the stage is not part of the process.
            UnknownProcessError: If the process is not in the store.
        """
        ids = list(dict.fromkeys(candidate_ids))

        if process_id is None:
            process_id = await self._derive_process_id(ids)
            if process_id is None:
                logger.warning("move_without_known_candidates", candidate_ids=ids)
                return MoveResult(
                    process_id=None,
                    target_stage_id=target_stage_id,
                    blocked=[
                        BlockedCandidate(cid, cid, BlockReason.NOT_FOUND) for cid in ids
                    ],
                )

        # Check and claim the board without an await in between
        if self.is_busy(process_id):
            logger.info(
                "move_ignored",
                process_id=process_id,
                phase=self.phase(process_id).value,
                candidate_ids=ids,
            )
            return MoveResult(process_id=process_id, target_stage_id=target_stage_id, ignored=True)

        self._phases[process_id] = MovePhase.VALIDATING
        try:
            return await self._run(ids, target_stage_id, acting_user, process_id)
        finally:
            self._phases.pop(process_id, None)

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _run(
        self,
        ids: list[str],
        target_stage_id: str,
        acting_user: str,
        process_id: str,
    ) -> MoveResult:
        process = await self.store.get_process(process_id)
        if process is None:
            raise UnknownProcessError(f"Process '{process_id}' not found")

        stage = process.get_stage(target_stage_id)
        if stage is None:
            raise UnknownStageError(
                f"Stage '{target_stage_id}' does not belong to process '{process.title}'"
            )

        result = MoveResult(process_id=process_id, target_stage_id=target_stage_id)

        logger.info(
            "move_validating",
            process_id=process_id,
            target_stage_id=target_stage_id,
            candidates=len(ids),
        )
        outcomes = await asyncio.gather(
            *(self._validate(cid, process, stage) for cid in ids)
        )

        self._phases[process_id] = MovePhase.PARTITIONED
        movable: list[Candidate] = []
        for outcome in outcomes:
            if isinstance(outcome, BlockedCandidate):
                result.blocked.append(outcome)
            elif outcome.stage_id == target_stage_id:
                result.unchanged.append(outcome.id)
            else:
                movable.append(outcome)

        logger.info(
            "move_partitioned",
            process_id=process_id,
            movable=len(movable),
            blocked=len(result.blocked),
            unchanged=len(result.unchanged),
        )

        self._phases[process_id] = MovePhase.COMMITTING
        for candidate in movable:
            try:
                await self.store.move_candidate(
                    candidate.id, target_stage_id, acting_user, self.clock()
                )
            except Exception as e:
                logger.error(
                    "move_commit_failed",
                    candidate_id=candidate.id,
                    target_stage_id=target_stage_id,
                    error=str(e),
                )
                result.blocked.append(
                    BlockedCandidate(
                        candidate_id=candidate.id,
                        candidate_name=candidate.name,
                        reason=BlockReason.COMMIT_FAILED,
                        detail=str(e),
                    )
                )
                continue

            result.moved.append(candidate.id)
            logger.info(
                "move_committed",
                candidate_id=candidate.id,
                from_stage_id=candidate.stage_id,
                stage_id=target_stage_id,
                moved_by=acting_user,
            )

        try:
            result.candidates = await self.store.list_candidates(process_id)
        except Exception as e:
            logger.warning("move_resync_failed", process_id=process_id, error=str(e))

        if result.blocked:
            logger.warning(
                "move_blocked",
                process_id=process_id,
                message=result.failure_message,
            )
        return result

    async def _validate(
        self, candidate_id: str, process: Process, stage: Stage
    ) -> Candidate | BlockedCandidate:
        """Gate one candidate; every failure becomes a BlockedCandidate."""
        name = candidate_id
        try:
            candidate = await self.store.get_candidate(candidate_id)
            if candidate is None:
                return BlockedCandidate(candidate_id, candidate_id, BlockReason.NOT_FOUND)
            name = candidate.name

            if candidate.process_id != process.id:
                return BlockedCandidate(candidate_id, name, BlockReason.WRONG_PROCESS)

            if candidate.stage_id == stage.id:
                return candidate

            attachments = await self.attachment_source(candidate)
            gate = StageGate.evaluate(attachments, stage.required_documents)
            if gate.satisfied:
                return candidate

            return BlockedCandidate(
                candidate_id=candidate_id,
                candidate_name=name,
                reason=BlockReason.MISSING_DOCUMENTS,
                missing_category_ids=list(gate.missing),
                missing_categories=[category_label(process, cid) for cid in gate.missing],
            )

        except Exception as e:
            logger.error(
                "move_validation_failed",
                candidate_id=candidate_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return BlockedCandidate(
                candidate_id=candidate_id,
                candidate_name=name,
                reason=BlockReason.VALIDATION_ERROR,
                detail=str(e),
            )

    async def _derive_process_id(self, ids: list[str]) -> str | None:
        """Board of the first candidate that can be read; failed reads are skipped."""
        for cid in ids:
            try:
                candidate = await self.store.get_candidate(cid)
            except Exception as e:
                logger.warning(
                    "move_process_lookup_failed",
                    candidate_id=cid,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if candidate is not None:
                return candidate.process_id
        return None
