"""Payload assembly for tasks.

Builds the text sent to a worker from a task's input locations using
Jinja2 templates configured in ``InputConfig``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import jinja2

from sheetrelay.core.config import InputConfig
from sheetrelay.core.models import Task


class PayloadBuilder:
    """Renders a task's payload from its input values.

    Example:
        builder = PayloadBuilder(InputConfig())
        builder.build(task, {"A5": "question"})
        # "Current position: B5\\n\\nquestion"
    """

    def __init__(
        self,
        config: InputConfig | None = None,
        jinja_env: jinja2.Environment | None = None,
    ) -> None:
        """Initialize payload builder.

        Args:
            config: Input configuration.
            jinja_env: Optional custom Jinja2 environment.
        """
        self.config = config or InputConfig()
        self.env = jinja_env or jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._header = self.env.from_string(self.config.position_header)
        self._template = (
            self.env.from_string(self.config.template) if self.config.template else None
        )

    def template_context(self, task: Task, inputs: list[str]) -> dict[str, Any]:
        """Variables available to the header and payload templates."""
        context: dict[str, Any] = dict(self.config.variables)
        context.update(
            position=task.position,
            stage=task.stage,
            row=task.row,
            task_id=task.id,
            job_type=task.job_type,
            variant=task.variant or "",
            capability=task.capability or "",
            inputs=inputs,
        )
        return context

    def build(self, task: Task, values: Mapping[str, str | None]) -> str | None:
        """Render the payload.

        Args:
            task: Task being dispatched.
            values: Stored values keyed by input location.

        Returns:
            The payload, or None when every input is empty.
        """
        inputs = [
            v.strip() for ref in task.input_refs if (v := values.get(ref)) and v.strip()
        ]
        if not inputs:
            return None

        context = self.template_context(task, inputs)
        header = self._header.render(**context)
        if self._template is None:
            return self.config.separator.join([header, *inputs])
        context["header"] = header
        return self._template.render(**context)


__all__ = ["PayloadBuilder"]
