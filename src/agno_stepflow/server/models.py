"""Pydantic models for the REST server."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import WorkflowRunOptions


class RunOptionsBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_context: Dict[str, Any] = Field(default_factory=dict, alias="userContext")

    def to_run_options(self) -> WorkflowRunOptions:
        return WorkflowRunOptions(
            user_id=self.user_id,
            conversation_id=self.conversation_id,
            user_context=self.user_context,
        )


class ExecuteRequest(BaseModel):
    input: Any = None
    options: Optional[RunOptionsBody] = None

    def run_options(self) -> WorkflowRunOptions:
        return self.options.to_run_options() if self.options else WorkflowRunOptions()


class SuspendRequest(BaseModel):
    reason: Optional[str] = None


class ResumeOptionsBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    step_id: Optional[str] = Field(default=None, alias="stepId")


class ResumeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resume_data: Any = Field(default=None, alias="resumeData")
    options: Optional[ResumeOptionsBody] = None

    @property
    def step_id(self) -> Optional[str]:
        return self.options.step_id if self.options else None
