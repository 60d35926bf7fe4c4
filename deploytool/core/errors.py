"""
Error taxonomy for deployment runs.

DeploymentError
├── ConnectivityError     open/auth/network failures, never retried
├── TableValidationError  missing table or unmet precondition
├── CollaboratorError     schema compare/publish/script failures
├── DataIntegrityError    truncate or bulk load failed on the target
└── PolicyBlockError      deliberate refusal (destructive change block)
"""
from typing import Optional

from .enums import FailureKind


class DeploymentError(Exception):
    """Base class for failures that are reported on a result object"""

    kind: FailureKind = FailureKind.UNEXPECTED

    def __init__(self, message: str, kind: Optional[FailureKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ConnectivityError(DeploymentError):
    kind = FailureKind.CONNECTIVITY


class TableValidationError(DeploymentError):
    kind = FailureKind.VALIDATION


class CollaboratorError(DeploymentError):
    kind = FailureKind.COLLABORATOR


class DataIntegrityError(DeploymentError):
    kind = FailureKind.DATA_INTEGRITY


class PolicyBlockError(DeploymentError):
    kind = FailureKind.POLICY_BLOCK
