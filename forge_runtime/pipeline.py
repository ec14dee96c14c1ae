"""Prompt scaffolding for the execution pipeline."""

from dataclasses import dataclass
from typing import List

from .models import Message, Role, RunRequest, Workflow

OUTPUT_RULES = (
    "### OUTPUT RULES\n"
    "- Follow constraints exactly\n"
    "- Use deterministic sections\n"
    "- End with a checklist"
)

REPAIR_INSTRUCTION = (
    "### REPAIR PASS\n"
    "Improve this output for:\n"
    "- constraint compliance\n"
    "- deterministic format\n"
    "- concise SLM-friendly structure\n"
    "\n"
    "Return repaired output only."
)


@dataclass(frozen=True)
class PipelineContext:
    """Goal/audience/constraints extracted from the workflow inputs."""
    workflow: Workflow
    goal: str
    audience: str
    constraints: str

    @classmethod
    def from_request(cls, request: RunRequest) -> "PipelineContext":
        audience = request.audience
        constraints = request.constraints
        if request.workflow == Workflow.VALIDATE_SLM:
            audience = "SLM operators"
            constraints = f"Max response words: {request.max_response_words}"
        return cls(
            workflow=request.workflow,
            goal=request.goal,
            audience=audience,
            constraints=constraints,
        )

    def compact(self) -> str:
        return "\n".join([
            f"Goal: {self.goal}",
            f"Audience: {self.audience}",
            f"Constraints: {self.constraints}",
        ])


@dataclass(frozen=True)
class PipelineRequest:
    context: PipelineContext
    scaffold_prompt: str
    messages: List[Message]


def build_pipeline_request(request: RunRequest) -> PipelineRequest:
    """Append the compact context block and output rules to the user prompt."""
    context = PipelineContext.from_request(request)
    scaffold = f"{request.user}\n\n### PIPELINE CONTEXT\n{context.compact()}\n\n{OUTPUT_RULES}"
    return PipelineRequest(
        context=context,
        scaffold_prompt=scaffold,
        messages=[
            Message(role=Role.SYSTEM, content=request.system),
            Message(role=Role.USER, content=scaffold),
        ],
    )


def build_repair_messages(system: str, output: str) -> List[Message]:
    return [
        Message(role=Role.SYSTEM, content=system),
        Message(role=Role.USER, content=f"{output}\n\n{REPAIR_INSTRUCTION}"),
    ]
