"""Retrieval and summarization workflow.

This workflow:
1. Searches the web and the news in parallel
2. Summarizes the combined findings

A suspended or failed execution resumes at the step it stopped at; the
parallel retrieval re-runs both searches when resumed.
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field

import logging
logger = logging.getLogger(__name__)

from ..core import (
    AgentFactory,
    StepContext,
    StructuredAgent,
    Workflow,
    and_agent,
    and_all,
    and_tap,
)

WORKFLOW_ID = "retrieval-summarize"


class ResearchQuery(BaseModel):
    query: str


class WebFindings(BaseModel):
    web_results: str
    web_sources: List[str] = Field(default_factory=list)


class NewsFindings(BaseModel):
    news_results: str
    headlines: List[str] = Field(default_factory=list)


class ResearchSummary(BaseModel):
    summary: str
    key_findings: List[str] = Field(default_factory=list)


def web_search_prompt(ctx: StepContext) -> str:
    return f"Search the web for: {ctx.data['query']}"


def news_search_prompt(ctx: StepContext) -> str:
    return f"Find the latest news about: {ctx.data['query']}"


def summary_prompt(ctx: StepContext) -> str:
    """Build context for summarization from both retrieval results."""
    findings = ctx.data
    retrieval = ctx.get_step_data("retrieve")
    query = retrieval.input["query"] if retrieval else ""

    context_parts = [
        f"Query: {query}",
        "\n## Information to Summarize:\n",
        "### Web Search Results:",
        findings.get("web_results") or "No results",
    ]
    if findings.get("web_sources"):
        context_parts.append("Sources: " + ", ".join(findings["web_sources"]))

    context_parts.append("")
    context_parts.append("### News Search Results:")
    context_parts.append(findings.get("news_results") or "No results")
    for headline in findings.get("headlines", []):
        context_parts.append(f"- {headline}")

    context_parts.append("\n## Instructions:")
    context_parts.append("Please provide a comprehensive summary of the above information.")
    context_parts.append("Focus on key findings, recent developments, and actionable insights.")
    return "\n".join(context_parts)


def report_sources(ctx: StepContext) -> None:
    ctx.writer.write(
        "retrieval-sources",
        output={
            "webSources": ctx.data.get("web_sources", []),
            "headlines": ctx.data.get("headlines", []),
        },
    )


def create_retrieval_workflow(
    web_agent: Optional[StructuredAgent] = None,
    news_agent: Optional[StructuredAgent] = None,
    summary_agent: Optional[StructuredAgent] = None,
    **config,
) -> Workflow:
    """Build the retrieval and summarization workflow.

    Agents default to the agno agents built by ``AgentFactory``; pass fakes
    to run without a language model.

    Args:
        web_agent: Agent answering with ``WebFindings``
        news_agent: Agent answering with ``NewsFindings``
        summary_agent: Agent answering with ``ResearchSummary``
        **config: Extra ``Workflow`` arguments (storage, monitor, hooks)

    Returns:
        Workflow ``retrieval-summarize``
    """
    if web_agent is None:
        web_agent = AgentFactory.create_web_search_agent(
            response_model=WebFindings,
            search_provider=os.getenv("SEARCH_PROVIDER", "duckduckgo"),
        )
    if news_agent is None:
        news_agent = AgentFactory.create_news_search_agent(response_model=NewsFindings)
    if summary_agent is None:
        summary_agent = AgentFactory.create_summarization_agent(response_model=ResearchSummary)

    return Workflow(
        WORKFLOW_ID,
        [
            and_all(
                [
                    and_agent(web_search_prompt, web_agent, WebFindings, id="web-search"),
                    and_agent(news_search_prompt, news_agent, NewsFindings, id="news-search"),
                ],
                id="retrieve",
                purpose="Search the web and the news in parallel",
            ),
            and_tap(report_sources, id="report-sources"),
            and_agent(summary_prompt, summary_agent, ResearchSummary, id="summarize"),
        ],
        name="Retrieval and summarization",
        purpose="Research a query and summarize the findings",
        input_schema=ResearchQuery,
        result_schema=ResearchSummary,
        **config,
    )
