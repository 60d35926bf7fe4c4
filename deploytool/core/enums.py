from enum import Enum


class UpdateAction(str, Enum):
    ADD = "Add"
    CHANGE = "Change"
    DELETE = "Delete"


class DifferenceType(str, Enum):
    TABLE = "Table"
    COLUMN = "Column"


class FailureKind(str, Enum):
    """Classification of the failure that ended a unit of work"""
    CONNECTIVITY = "connectivity"
    VALIDATION = "validation"
    COLLABORATOR = "collaborator"
    DATA_INTEGRITY = "data_integrity"
    POLICY_BLOCK = "policy_block"
    UNEXPECTED = "unexpected"


class RunState(str, Enum):
    COMPLETED = "completed"
    ABORTED_AT_SOURCE_VALIDATION = "aborted_at_source_validation"
    ABORTED_AT_TARGET_VALIDATION = "aborted_at_target_validation"


def enum_value(value) -> str:
    """Plain string for an enum member or an already-plain value"""
    return value.value if isinstance(value, Enum) else str(value)
