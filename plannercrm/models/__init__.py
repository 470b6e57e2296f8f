"""Database models — re-exports all models.

Import from here:  from plannercrm.models import User, BackfillRun, ...
Or from submodules: from plannercrm.models.discovery import BackfillRun
"""

from .base import Base  # noqa: F401

# Owners
from .auth import User  # noqa: F401

# CRM: projects, suppliers, pipeline status
from .crm import Project, ProjectSupplier, Supplier  # noqa: F401

# Discovery: backfill runs & candidates
from .discovery import (  # noqa: F401
    BackfillRun,
    CandidateStatus,
    EnrichmentStatus,
    NotRelevant,
    Relevant,
    RunStatus,
    SupplierCandidate,
    Unknown,
)

# Signal lexicon
from .statuses import StatusDefinition, StatusOverride  # noqa: F401

# Threads & messages
from .threads import EmailMessage, EmailThread  # noqa: F401

# Proposals
from .proposals import ProposalStatus, StatusProposal, pair_key  # noqa: F401
