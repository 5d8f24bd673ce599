"""ToolDispatcherPort - executes an image-editing tool.

The dispatcher is an external collaborator: it receives already validated
parameters and a reference to the input image, and returns a reference to
the output image. A single call is atomic from the pipeline's point of view.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from editguard.shared.types import ExecutionOutcome


class ToolDispatcherPort(ABC):
    """Port: tool execution."""

    @abstractmethod
    async def execute(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        image_ref: str,
    ) -> ExecutionOutcome:
        """Run a tool against an image.

        Args:
            tool_name: Catalogue name of the tool.
            parameters: Validated parameters.
            image_ref: Reference of the input image in the image store.

        Returns:
            ExecutionOutcome with result_ref on success or error on failure.

        Raises:
            RateLimitedError: The tool service signalled rate limiting.
            ToolExecutionError: The tool service failed.
            StageTimeoutError: The call exceeded its deadline.
        """
