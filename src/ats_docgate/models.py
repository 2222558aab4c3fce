"""
Core data models for the document-gated candidate workflow.

Processes own their stages and document categories; candidates live in
exactly one stage of one process and carry their attachments and stage
history. All models are immutable: stores hand out copies and callers
build updated instances with ``model_copy(update=...)``.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DocumentCategory(BaseModel):
    """A kind of document a process expects from its candidates."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Category identifier, referenced by stages and attachments")
    name: str = Field(description="Display name, e.g. 'Signed Contract'")
    description: str | None = Field(default=None)
    required: bool = Field(default=False, description="Shown as required in the checklist")


class Stage(BaseModel):
    """One column of a process pipeline."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    required_documents: list[str] | None = Field(
        default=None,
        description="Category ids a candidate must have before entering this stage",
    )
    is_critical: bool = Field(default=False)


class Process(BaseModel):
    """A hiring process: ordered stages plus the document categories they gate on."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    stages: list[Stage] = Field(default_factory=list)
    document_categories: list[DocumentCategory] = Field(default_factory=list)

    # Drive folder remembered from the last resolution
    drive_folder_id: str | None = None
    drive_folder_name: str | None = None

    @property
    def stage_ids(self) -> list[str]:
        return [s.id for s in self.stages]

    def get_stage(self, stage_id: str) -> Stage | None:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def has_stage(self, stage_id: str) -> bool:
        return self.get_stage(stage_id) is not None

    def get_category(self, category_id: str) -> DocumentCategory | None:
        for category in self.document_categories:
            if category.id == category_id:
                return category
        return None


class Attachment(BaseModel):
    """A document attached to a candidate, optionally tagged with a category."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    url: str
    category: str | None = Field(default=None, description="DocumentCategory id, if tagged")
    mime_type: str = "application/octet-stream"
    size: int = 0
    uploaded_at: datetime | None = None
    drive_file_id: str | None = None


class CandidateHistory(BaseModel):
    """One entry of a candidate's stage history (the move audit trail)."""
    model_config = ConfigDict(frozen=True)

    stage_id: str
    moved_at: datetime
    moved_by: str = "System"


class Candidate(BaseModel):
    """A person moving through the stages of one process."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str = ""
    process_id: str
    stage_id: str
    attachments: list[Attachment] = Field(default_factory=list)
    history: list[CandidateHistory] = Field(default_factory=list)
    archived: bool = False

    # Drive folder remembered from the last resolution
    drive_folder_id: str | None = None
    drive_folder_name: str | None = None

    @property
    def categorized_attachments(self) -> list[Attachment]:
        return [a for a in self.attachments if a.category]

    @property
    def last_moved_at(self) -> datetime | None:
        if not self.history:
            return None
        return self.history[-1].moved_at
