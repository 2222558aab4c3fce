"""
Shared pytest fixtures for ats_docgate tests.

This module provides common fixtures used across test modules including:
- The in-memory Drive from drive_fakes, routed through httpx.MockTransport
- Token session, client and registry fixtures wired to the fake
- Sample process, candidates and record store
"""

import sys
from pathlib import Path
from typing import List

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ats_docgate.gdrive.auth import TokenSession
from ats_docgate.gdrive.client import RemoteObjectClient
from ats_docgate.gdrive.files import RemoteFileRegistry
from ats_docgate.gdrive.folders import RemoteFolderRegistry
from ats_docgate.models import Candidate, DocumentCategory, Process, Stage
from ats_docgate.store import InMemoryCandidateStore

from drive_fakes import TOKEN_URL, FakeDrive, make_attachment

# ============================================================================
# Drive Fixtures
# ============================================================================


@pytest.fixture
def fake_drive() -> FakeDrive:
    """Fresh in-memory Drive."""
    return FakeDrive()


@pytest.fixture
def http_client(fake_drive: FakeDrive) -> httpx.AsyncClient:
    """httpx client routed to the fake Drive."""
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_drive.handler))


@pytest.fixture
def session(http_client: httpx.AsyncClient) -> TokenSession:
    """Connected session holding the fake's first token."""
    return TokenSession(
        "token-1",
        "refresh-1",
        token_endpoint=TOKEN_URL,
        http_client=http_client,
    )


@pytest.fixture
def drive_client(session: TokenSession, http_client: httpx.AsyncClient) -> RemoteObjectClient:
    return RemoteObjectClient(session, http_client=http_client)


@pytest.fixture
def folders(drive_client: RemoteObjectClient) -> RemoteFolderRegistry:
    return RemoteFolderRegistry(drive_client)


@pytest.fixture
def files(drive_client: RemoteObjectClient) -> RemoteFileRegistry:
    return RemoteFileRegistry(drive_client)


# ============================================================================
# Record Fixtures
# ============================================================================


@pytest.fixture
def engineering_process() -> Process:
    """Engineering process whose Offer stage requires a signed contract."""
    return Process(
        id="proc-eng",
        title="Engineering",
        stages=[
            Stage(id="applied", name="Applied"),
            Stage(id="interview", name="Interview", required_documents=["cv"]),
            Stage(id="offer", name="Offer", required_documents=["signed-contract"]),
            Stage(
                id="hired",
                name="Hired",
                required_documents=["signed-contract", "id-document"],
                is_critical=True,
            ),
        ],
        document_categories=[
            DocumentCategory(id="cv", name="CV", required=True),
            DocumentCategory(id="signed-contract", name="Signed Contract", required=True),
            DocumentCategory(id="id-document", name="ID Document"),
            DocumentCategory(id="portfolio", name="Portfolio"),
        ],
    )


@pytest.fixture
def design_process() -> Process:
    return Process(
        id="proc-design",
        title="Design",
        stages=[Stage(id="applied", name="Applied"), Stage(id="offer", name="Offer")],
    )


@pytest.fixture
def candidates() -> List[Candidate]:
    """Three Engineering candidates in Interview.

    Ana has a signed contract, Ben has only an untagged file, Cleo has
    a signed contract and a CV.
    """
    return [
        Candidate(
            id="cand-ana",
            name="Ana",
            process_id="proc-eng",
            stage_id="interview",
            attachments=[make_attachment("att-1", "signed-contract", "contract.pdf")],
        ),
        Candidate(
            id="cand-ben",
            name="Ben",
            process_id="proc-eng",
            stage_id="interview",
            attachments=[make_attachment("att-2", None, "contract.pdf")],
        ),
        Candidate(
            id="cand-cleo",
            name="Cleo",
            process_id="proc-eng",
            stage_id="interview",
            attachments=[
                make_attachment("att-3", "signed-contract", "contract.pdf"),
                make_attachment("att-4", "cv", "cv.pdf"),
            ],
        ),
    ]


@pytest.fixture
def store(
    engineering_process: Process,
    design_process: Process,
    candidates: List[Candidate],
) -> InMemoryCandidateStore:
    """Store seeded with both processes and the Engineering candidates."""
    return InMemoryCandidateStore(
        processes=[engineering_process, design_process],
        candidates=candidates,
    )
