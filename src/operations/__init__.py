"""VM lifecycle operations run as build steps."""

from operations.base import (
    IP_VARIABLE,
    StepContext,
    VMOperation,
    get_operation_class,
    list_operations,
    operation_from_dict,
    register_operation,
)
from operations.clone import Clone
from operations.deploy import DEFAULT_RESOURCE_POOL, Deploy
from operations.annotation import AddAnnotation

__all__ = [
    'IP_VARIABLE',
    'StepContext',
    'VMOperation',
    'get_operation_class',
    'list_operations',
    'operation_from_dict',
    'register_operation',
    'Clone',
    'Deploy',
    'DEFAULT_RESOURCE_POOL',
    'AddAnnotation',
]
