"""
Caller-side decision points for interactive runs.

The engine never prompts. These helpers give a command-line caller the
tutorials' behaviour: failed runs are always cleaned up, successful runs
ask "Do you want to clean up all created resources? (y/n)", and Ctrl-C
cancels provisioning and rolls back instead of abandoning resources.
"""

import logging
import re
import signal
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from cloudseq.provisioning.state import WorkflowResult

logger = logging.getLogger(__name__)

CLEANUP_PROMPT = "Do you want to clean up all created resources? (y/n): "

_YES = re.compile(r"^[Yy]$")


def confirm_cleanup(prompt_fn: Callable[[str], str] = input) -> bool:
    """Ask whether to clean up; only a single 'y' or 'Y' means yes."""
    try:
        answer = prompt_fn(CLEANUP_PROMPT)
    except EOFError:
        return False
    return bool(_YES.match((answer or "").strip()))


def interactive_cleanup(
    prompt_fn: Callable[[str], str] = input,
    show: Callable[[str], None] = print,
) -> Callable[[WorkflowResult], bool]:
    """
    Build a cleanup decider for WorkflowEngine.run().

    Failed runs are rolled back without asking. Successful runs list the
    created resources and ask the operator.
    """

    def decide(result: WorkflowResult) -> bool:
        if not result.succeeded:
            return True
        if not result.ledger_snapshot:
            return False

        show("")
        show("===========================================")
        show("RESOURCES CREATED")
        show("===========================================")
        for handle in result.ledger_snapshot:
            show(f"- {handle.kind}: {handle.resource_id}")
        show("")
        return confirm_cleanup(prompt_fn)

    return decide


def always_cleanup(result: WorkflowResult) -> bool:
    return True


def never_cleanup(result: WorkflowResult) -> bool:
    return False


@contextmanager
def cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[threading.Event]:
    """
    Route SIGINT to a cancellation event while the block runs.

    The first Ctrl-C sets the event (provisioning stops and rolls back);
    a second one restores the default handler behaviour. Only installs the
    handler on the main thread.
    """
    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum, frame):
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, previous)
            raise KeyboardInterrupt
        logger.warning("Interrupt received, cancelling and cleaning up...")
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)
