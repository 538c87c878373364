"""Set the annotation (notes) of an existing VM."""

import time
from dataclasses import dataclass
from typing import ClassVar, Mapping

from client import VSphereClient
from common import OperationResult, vs_log
from operations.base import StepContext, expand_fields, register_operation, remote_call, require


@register_operation
@dataclass(frozen=True)
class AddAnnotation:
    """Replace the annotation of ``vm`` with ``annotation``."""
    kind: ClassVar[str] = 'annotate'
    display_name: ClassVar[str] = 'Add annotation to VM'

    vm: str = ''
    annotation: str = ''

    def __post_init__(self):
        require(self.vm, "the VM name")

    def describe(self) -> str:
        return self.display_name

    def expand_parameters(self, env: Mapping[str, str]) -> 'AddAnnotation':
        return expand_fields(self, env, ('vm', 'annotation'))

    def execute(self, client: VSphereClient, step: StepContext) -> OperationResult:
        start = time.time()
        op = self.expand_parameters(step.env)

        vs_log(step.log, f"Adding annotation of VM \"{op.vm}\" Annotation \"{op.annotation}\". Please wait ...")
        with remote_call(f"Failed to annotate \"{op.vm}\""):
            client.set_annotation(op.vm, op.annotation)
        vs_log(step.log, "Annotation added!")
        return OperationResult(
            success=True,
            message=f"Annotation set on {op.vm}",
            duration=time.time() - start
        )
