"""
Step tracking for the backup and restore state machines.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from octeth_backup.core.exceptions import format_exception
from octeth_backup.core.models import StepOutcome, StepStatus

logger = logging.getLogger(__name__)


@contextmanager
def track_step(steps: list[StepOutcome], name: str) -> Iterator[StepOutcome]:
    """
    Time a step and append its outcome to steps.

    The block may set status and message on the yielded outcome. An
    exception marks the step failed and propagates unchanged.
    """
    outcome = StepOutcome(step=name, status=StepStatus.OK)
    start = time.monotonic()
    try:
        yield outcome
    except BaseException as e:
        outcome.status = StepStatus.FAILED
        outcome.message = format_exception(e)
        raise
    finally:
        outcome.duration_seconds = time.monotonic() - start
        steps.append(outcome)
        logger.debug(f"Step {name}: {outcome.status.value} {outcome.message}".rstrip())
