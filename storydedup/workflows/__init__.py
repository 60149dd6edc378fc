"""Workflow layer for running detection over stored issues.

Usage::

    from storydedup.workflows import IssueDedupWorkflow
    result = IssueDedupWorkflow(issue_id).run()
"""

from storydedup.workflows.base import BaseWorkflow, WorkflowResult
from storydedup.workflows.dedup import IssueDedupWorkflow

__all__ = [
    "BaseWorkflow",
    "WorkflowResult",
    "IssueDedupWorkflow",
]
