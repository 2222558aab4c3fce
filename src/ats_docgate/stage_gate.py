"""
Stage Gate: document requirements for entering a pipeline stage.

A stage may list document category ids a candidate must have before it can
be moved into that stage. The gate answers one question: given the
candidate's attachments, which of those categories are still missing?

Rules:
- Attachments are grouped by their category tag; untagged attachments
  never satisfy anything.
- A required category is satisfied iff its group is non-empty.
- A stage without requirements is always satisfied.
- A required id with no matching category definition (deleted category)
  is still evaluated and always reported missing. Rendering a label for
  it is the display layer's job (see category_label).

The evaluator is pure: it never fetches attachments. Callers pass the
freshly fetched, authoritative attachment list.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ats_docgate.models import Attachment, DocumentCategory, Process


@dataclass(frozen=True)
class GateResult:
    """Outcome of evaluating a stage gate.

    Attributes:
        satisfied: True when no required category is missing.
        missing: Missing category ids, in the stage's requirement order.
    """

    satisfied: bool
    missing: list[str] = field(default_factory=list)


def group_by_category(attachments: Iterable[Attachment]) -> dict[str, list[Attachment]]:
    """Group attachments by category id, leaving out untagged ones."""
    groups: dict[str, list[Attachment]] = defaultdict(list)
    for attachment in attachments:
        if attachment.category:
            groups[attachment.category].append(attachment)
    return dict(groups)


class StageGate:
    """Evaluates document requirements for stage entry."""

    @staticmethod
    def evaluate(
        attachments: Iterable[Attachment],
        required_category_ids: Sequence[str] | None,
    ) -> GateResult:
        """Compute which required categories have no attachment.

        Args:
            attachments: The candidate's current attachments.
            required_category_ids: Category ids required by the target stage.

        Returns:
            GateResult with the missing ids (duplicates in the requirement
            list are reported once).
        """
        if not required_category_ids:
            return GateResult(satisfied=True)

        groups = group_by_category(attachments)
        missing: list[str] = []
        for category_id in required_category_ids:
            if not groups.get(category_id) and category_id not in missing:
                missing.append(category_id)

        return GateResult(satisfied=not missing, missing=missing)

    @classmethod
    def evaluate_for_stage(
        cls,
        process: Process,
        stage_id: str,
        attachments: Iterable[Attachment],
    ) -> GateResult:
        """Evaluate the gate of one stage of a process.

        Raises:
            KeyError: If the stage does not belong to the process.
        """
        stage = process.get_stage(stage_id)
        if stage is None:
            raise KeyError(f"Stage '{stage_id}' not found in process '{process.id}'")
        return cls.evaluate(attachments, stage.required_documents)


def category_label(process: Process, category_id: str) -> str:
    """Display name for a category id, with a fallback for deleted categories."""
    category = process.get_category(category_id)
    if category is None:
        return f"Unknown category ({category_id})"
    return category.name


# =============================================================================
# Document checklist
# =============================================================================


class CategoryStatus(str, Enum):
    """Checklist status of one document category for one candidate."""
    COMPLETE = "complete"
    MISSING = "missing"
    OPTIONAL_COMPLETE = "optional_complete"
    OPTIONAL_EMPTY = "optional_empty"


@dataclass
class ChecklistEntry:
    """One row of a candidate's document checklist."""

    category: DocumentCategory
    status: CategoryStatus
    required_for_stage: bool
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def is_required(self) -> bool:
        return self.category.required or self.required_for_stage


@dataclass
class DocumentChecklist:
    """Per-category view of a candidate's documents in their current stage."""

    entries: list[ChecklistEntry]
    uncategorized: list[Attachment]
    stage_requirements: list[str]
    gate: GateResult

    @property
    def can_advance(self) -> bool:
        """True when the current stage's requirements are all met."""
        return self.gate.satisfied

    @property
    def completed_count(self) -> int:
        return sum(
            1 for e in self.entries
            if e.status in (CategoryStatus.COMPLETE, CategoryStatus.OPTIONAL_COMPLETE)
        )

    @property
    def missing_count(self) -> int:
        return sum(1 for e in self.entries if e.status == CategoryStatus.MISSING)


def build_checklist(
    process: Process,
    stage_id: str,
    attachments: Sequence[Attachment],
) -> DocumentChecklist:
    """Build the document checklist for a candidate sitting in ``stage_id``.

    Category status follows the category's own ``required`` flag; whether a
    category gates the current stage is reported separately.
    """
    groups = group_by_category(attachments)
    stage = process.get_stage(stage_id)
    requirements = list(stage.required_documents or []) if stage else []

    entries: list[ChecklistEntry] = []
    for category in process.document_categories:
        found = groups.get(category.id, [])
        if category.required:
            status = CategoryStatus.COMPLETE if found else CategoryStatus.MISSING
        else:
            status = CategoryStatus.OPTIONAL_COMPLETE if found else CategoryStatus.OPTIONAL_EMPTY
        entries.append(
            ChecklistEntry(
                category=category,
                status=status,
                required_for_stage=category.id in requirements,
                attachments=found,
            )
        )

    return DocumentChecklist(
        entries=entries,
        uncategorized=[a for a in attachments if not a.category],
        stage_requirements=requirements,
        gate=StageGate.evaluate(attachments, requirements),
    )
