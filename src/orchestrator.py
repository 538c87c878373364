"""Retry-governed execution of VM operations.

Retry policy:
- up to ``max_attempts`` guarded attempts; an exception is logged and the
  attempt counts as failed
- a fixed delay after every failed guarded attempt
- if none succeeded, one final unguarded attempt whose exception reaches
  the caller and aborts the build step

Values from the successful attempt are published once, after the retry
loop; a publishing failure is never retried.

Interrupts are never caught, neither during an attempt nor while sleeping.
"""

import logging
import time
from typing import Callable, Optional, TextIO

from client import VSphereClient
from common import OperationResult, StepAbortedError, vs_log
from environment import EnvironmentPublisher, PipelineHost, build_execution_context
from operations import StepContext, VMOperation

logger = logging.getLogger(__name__)


def run_with_retries(
    attempt: Callable[[], bool],
    max_attempts: int,
    retry_delay: float,
    log: Optional[TextIO] = None
) -> bool:
    """Run attempt until it returns a truthy value.

    Returns True as soon as an attempt succeeds, otherwise the result of
    the final unguarded attempt.
    """
    for i in range(max_attempts):
        try:
            if attempt():
                return True
            logger.debug(f"Attempt {i + 1}/{max_attempts} returned failure")
        except Exception as e:
            logger.debug(f"Attempt {i + 1}/{max_attempts} raised", exc_info=True)
            vs_log(log, f"Attempt {i + 1}/{max_attempts} failed: {e}")
        if retry_delay > 0:
            logger.debug(f"Retrying in {retry_delay}s...")
            time.sleep(retry_delay)

    if max_attempts:
        logger.info(f"All {max_attempts} attempts failed, making final attempt")
    return bool(attempt())


class Orchestrator:
    """Runs one VM operation against a client on behalf of a pipeline host."""

    def __init__(
        self,
        operation: VMOperation,
        client: Optional[VSphereClient],
        host: PipelineHost,
        retries: int = 0,
        retry_delay: float = 0,
    ):
        self.operation = operation
        self.client = client
        self.host = host
        self.retries = retries
        self.retry_delay = retry_delay
        self.publisher = EnvironmentPublisher(host)
        self.last_result: Optional[OperationResult] = None

    def _attempt(self) -> OperationResult:
        # Context is rebuilt every attempt; build parameters may have changed.
        env = build_execution_context(self.host)
        step = StepContext(env=env, host=self.host, log=self.host.log)
        result = self.operation.execute(self.client, step)
        self.last_result = result
        return result

    def _publish(self, result: OperationResult) -> None:
        """Hand a successful result's values to the host, outside any retry."""
        for key, value in (result.context_updates or {}).items():
            self.publisher.publish(key, value)

    def run(self) -> bool:
        """Run the operation with retries. Returns True on success.

        Raises the final attempt's error if every attempt failed.
        """
        name = self.operation.describe()
        logger.info(f"[{name}] Starting (retries: {self.retries}, delay: {self.retry_delay}s)")
        start = time.time()

        success = run_with_retries(
            lambda: self._attempt().success,
            self.retries,
            self.retry_delay,
            log=self.host.log,
        )
        if success and self.last_result is not None:
            self._publish(self.last_result)

        logger.info(f"[{name}] {'Completed' if success else 'Failed'} in {time.time() - start:.1f}s")
        return success

    def perform(self) -> OperationResult:
        """Single attempt; any failure aborts the step."""
        try:
            result = self._attempt()
            if result.success:
                self._publish(result)
        except Exception as e:
            raise StepAbortedError(str(e)) from e
        return result

    def preview(self) -> bool:
        """Show what would be executed without running. Returns True."""
        op = self.operation
        try:
            expanded = op.expand_parameters(build_execution_context(self.host))
        except Exception as e:
            logger.warning(f"Cannot expand parameters for preview: {e}")
            expanded = op

        print("")
        print("═══════════════════════════════════════════════════════════════")
        print(f"  DRY-RUN: {op.describe()}")
        print("═══════════════════════════════════════════════════════════════")
        print("")
        for name, value in vars(expanded).items():
            if name == 'guest_info_properties':
                for prop in value:
                    print(f"  guestinfo.{prop.name}: {prop.value}")
                continue
            print(f"  {name}: {value}")
        print("")
        print(f"  Retries: {self.retries} (+1 final attempt), delay {self.retry_delay}s")
        print("  Mode: DRY-RUN (no changes made)")
        print("═══════════════════════════════════════════════════════════════")
        print("")
        return True
