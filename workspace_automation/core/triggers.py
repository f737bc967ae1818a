"""
Edit trigger - the callback a change-capable store invokes on every cell edit.
"""

from typing import Optional

from util.logging import logger

from .classifier import classify
from .reader import get_user
from .schema import FIRST_DATA_ROW, USERS_SHEET, EditEvent, ProcessResult


class EditTrigger:
    """Classifies Usuarios edits and dispatches the resulting lifecycle event.

    Never raises: failures are logged and recorded as Error audit events, and the
    edit that caused them stays in place.
    """

    def __init__(self, registry, dispatcher):
        self.registry = registry
        self.dispatcher = dispatcher

    def __call__(self, edit: EditEvent) -> Optional[ProcessResult]:
        if edit.sheet != USERS_SHEET or edit.row < FIRST_DATA_ROW:
            return None

        try:
            snapshot = get_user(self.registry, edit.row)
            event = classify(edit.row, edit.column, snapshot)
            if event is None:
                return None
            return self.dispatcher.dispatch(event)
        except Exception as e:
            logger.log_trigger_error("edit", e, {"row": edit.row, "column": edit.column})
            self.dispatcher.record_error(f"Trigger error: {e}")
            return None


def install_edit_trigger(registry, dispatcher) -> EditTrigger:
    """Register an EditTrigger on the registry and return it."""
    trigger = EditTrigger(registry, dispatcher)
    registry.on_edit(trigger)
    return trigger
