"""Agent capability used by agent steps.

The engine only needs one thing from a language-model agent: turn a prompt
into a structured object and report token usage. ``StructuredAgent`` is that
boundary. ``AgnoAgentAdapter`` implements it over an ``agno`` agent and
``AgentFactory`` builds the agents used by the bundled workflows.
"""

import json
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from agno.agent import Agent, Toolkit
from pydantic import BaseModel, TypeAdapter

from ..config import EngineConfig
from .models import UsageInfo

import logging
logger = logging.getLogger(__name__)


class AgentResult(BaseModel):
    """Structured output of an agent call."""

    object: Any = None
    usage: Optional[UsageInfo] = None


@runtime_checkable
class StructuredAgent(Protocol):
    """Anything that can turn a prompt into a structured object."""

    async def generate_object(
        self,
        prompt: str,
        schema: Any,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> AgentResult:
        ...


def _sum_metric(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (list, tuple)):
        return sum(int(v or 0) for v in value)
    return int(value)


def usage_from_metrics(metrics: Any) -> Optional[UsageInfo]:
    """Build ``UsageInfo`` from agno run metrics.

    Metrics arrive either as a dict of per-call lists or as an object with
    token attributes, depending on the agno release.

    Args:
        metrics: ``RunResponse.metrics`` value

    Returns:
        Usage totals, or None if no metrics were reported
    """
    if not metrics:
        return None

    def read(*names: str) -> int:
        for name in names:
            if isinstance(metrics, dict):
                if name in metrics:
                    return _sum_metric(metrics[name])
            elif getattr(metrics, name, None) is not None:
                return _sum_metric(getattr(metrics, name))
        return 0

    prompt = read("input_tokens", "prompt_tokens")
    completion = read("output_tokens", "completion_tokens")
    total = read("total_tokens") or prompt + completion
    return UsageInfo(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class AgnoAgentAdapter:
    """Adapts an ``agno`` agent to the ``StructuredAgent`` capability.

    The wrapped agent should be created with a ``response_model`` matching the
    schema it will be asked for (see ``AgentFactory``); string content is
    parsed as JSON and validated against the requested schema.
    """

    def __init__(self, agent: Agent):
        self.agent = agent

    @property
    def name(self) -> str:
        return getattr(self.agent, "name", None) or type(self.agent).__name__

    async def generate_object(
        self,
        prompt: str,
        schema: Any,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> AgentResult:
        logger.debug(f"Agent {self.name} generating object for prompt of {len(prompt)} chars")

        response = await self.agent.arun(
            prompt,
            user_id=user_id,
            session_id=conversation_id,
        )

        content = response.content
        if isinstance(content, BaseModel):
            content = content.model_dump()
        elif isinstance(content, str) and schema is not None and schema is not str:
            content = json.loads(content)
        if schema is not None:
            content = TypeAdapter(schema).validate_python(content)
            if isinstance(content, BaseModel):
                content = content.model_dump()

        return AgentResult(object=content, usage=usage_from_metrics(response.metrics))

class AgentFactory:
    """Factory for creating configured agents."""

    @staticmethod
    def _default_openai_chat(model_id: Optional[str] = None):
        """Return a standard OpenAIChat model configured via environment variables.

        Args:
            model_id: The model identifier (defaults to ``STEPFLOW_AGENT_MODEL``)
        """
        from agno.models.openai import OpenAIChat  # Local import to avoid heavy import cost when not needed
        import os

        return OpenAIChat(
            id=model_id or EngineConfig.agent_model(),
            base_url=os.getenv("BASE_URL"),
            api_key=os.getenv("OPENAI_API_KEY"),
        )

    @staticmethod
    def create_structured_agent(
        name: str,
        instructions: str,
        response_model: Optional[Any] = None,
        model: Optional[Any] = None,
        tools: Optional[List[Toolkit]] = None,
    ) -> AgnoAgentAdapter:
        """Create an agent that answers with a structured object.

        Args:
            name: Agent name
            instructions: System instructions
            response_model: Pydantic model the agent must return
            model: Language model to use
            tools: Tools for the agent

        Returns:
            Adapter exposing ``generate_object``
        """
        if model is None:
            model = AgentFactory._default_openai_chat()

        agent = Agent(
            name=name,
            model=model,
            tools=tools or [],
            instructions=instructions,
            response_model=response_model,
        )
        return AgnoAgentAdapter(agent)

    @staticmethod
    def create_web_search_agent(
        response_model: Optional[Any] = None,
        model: Optional[Any] = None,
        tools: Optional[List[Toolkit]] = None,
        name: str = "WebSearchAgent",
        search_provider: str = "duckduckgo",  # Options: google, baidu, duckduckgo
    ) -> AgnoAgentAdapter:
        """Create a web search agent.

        Args:
            response_model: Structured output model for findings
            model: Language model to use
            tools: Additional tools for the agent
            name: Agent name
            search_provider: Search tool family to attach

        Returns:
            Configured web search agent
        """
        if search_provider == "google":
            from agno.tools.googlesearch import GoogleSearchTools
            default_tools = [GoogleSearchTools()]
        elif search_provider == "baidu":
            from agno.tools.baidusearch import BaiduSearchTools
            default_tools = [BaiduSearchTools()]
        else:
            from agno.tools.duckduckgo import DuckDuckGoTools
            default_tools = [DuckDuckGoTools()]

        if tools:
            default_tools.extend(tools)

        return AgentFactory.create_structured_agent(
            name=name,
            model=model,
            tools=default_tools,
            response_model=response_model,
            instructions="""You are a web search specialist. Search for recent, accurate and
authoritative information about the user's query. Return the key findings
together with their source URLs.
""",
        )

    @staticmethod
    def create_news_search_agent(
        response_model: Optional[Any] = None,
        model: Optional[Any] = None,
        tools: Optional[List[Toolkit]] = None,
        name: str = "NewsSearchAgent",
    ) -> AgnoAgentAdapter:
        """Create a news search agent.

        Args:
            response_model: Structured output model for findings
            model: Language model to use
            tools: Additional tools for the agent
            name: Agent name

        Returns:
            Configured news search agent
        """
        from agno.tools.hackernews import HackerNewsTools

        default_tools = [HackerNewsTools()]
        if tools:
            default_tools.extend(tools)

        return AgentFactory.create_structured_agent(
            name=name,
            model=model,
            tools=default_tools,
            response_model=response_model,
            instructions="""You are a news search specialist. Find the latest news related to the
user's query, prioritising recent developments. Return headlines with a short
summary and the source of each.
""",
        )

    @staticmethod
    def create_summarization_agent(
        response_model: Optional[Any] = None,
        model: Optional[Any] = None,
        name: str = "SummarizationAgent",
    ) -> AgnoAgentAdapter:
        """Create a summarization agent.

        Args:
            response_model: Structured output model for the summary
            model: Language model to use (defaults to ``STEPFLOW_SUMMARY_MODEL``)
            name: Agent name

        Returns:
            Configured summarization agent
        """
        if model is None:
            model = AgentFactory._default_openai_chat(EngineConfig.summary_model())

        return AgentFactory.create_structured_agent(
            name=name,
            model=model,
            response_model=response_model,
            instructions="""You are an expert summarization specialist. Synthesize the web and news
findings you are given into an executive summary followed by the key
findings. Keep the tone professional and objective.
""",
        )
