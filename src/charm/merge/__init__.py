"""Multi-source transcription merging."""

from charm.merge.engine import MERGE_SYSTEM_PROMPT, MergeEngine, check_alignment
from charm.merge.metadata import reconcile_metadata

__all__ = ["MERGE_SYSTEM_PROMPT", "MergeEngine", "check_alignment", "reconcile_metadata"]
