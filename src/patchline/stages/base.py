"""Shared machinery for stage agents.

A stage agent pairs a capability grant, a turn budget, a result schema and
a system prompt, and turns a :class:`PipelineState` into one gateway call.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, ClassVar, Generic, TypeVar

from pydantic import BaseModel

from patchline.capabilities import CapabilitySet
from patchline.errors import GatewayError
from patchline.gateway import AgentGateway, InvocationOptions
from patchline.schemas import GatewayResponse, PipelineStage, PipelineState

if TYPE_CHECKING:
    from patchline.pipeline.config import PipelineConfig

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


class StageAgent(Generic[ResultT]):
    """Base class for pipeline stages.

    Subclasses set the class attributes and implement ``run``. They call
    :meth:`_invoke`, which records the stage's session id and token usage
    on *state* and re-raises gateway failures unchanged.
    """

    stage: ClassVar[PipelineStage]
    capabilities: ClassVar[CapabilitySet]
    result_schema: ClassVar[type[BaseModel]]
    system_prompt: ClassVar[str] = ""

    def __init__(
        self,
        gateway: AgentGateway,
        config: PipelineConfig,
        *,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.cancel_event = cancel_event

    @property
    def max_turns(self) -> int:
        return self.config.max_turns_for(self.stage)

    def options_for(self, state: PipelineState) -> InvocationOptions:
        return InvocationOptions(
            working_directory=state.workspace_path,
            allowed_capabilities=self.capabilities,
            system_prompt=self.system_prompt,
            model=state.model,
            max_turns=self.max_turns,
            timeout_seconds=self.config.timeout_seconds,
            inactivity_timeout_seconds=self.config.inactivity_timeout_seconds,
            cancel_event=self.cancel_event,
        )

    def _invoke(self, state: PipelineState, prompt: str) -> tuple[ResultT, GatewayResponse]:
        logger.info(
            "[%s] invoking %s (max_turns=%s)", state.task_id[:8], self.stage.value, self.max_turns
        )
        try:
            response = self.gateway.invoke(prompt, self.options_for(state), self.result_schema)
        except GatewayError as exc:
            if exc.session_id:
                state.session_ids[self.stage.value] = exc.session_id
            raise
        if response.session_id:
            state.session_ids[self.stage.value] = response.session_id
        state.record_usage(self.stage, response.usage)
        return response.parsed, response
