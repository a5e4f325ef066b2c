"""
Research agent.

Loops decide -> search -> decide until the model is confident enough or the
search budget is spent, then writes a structured final answer.

    decide --"search"--> search --"decide"--> decide
    decide --"answer"--> answer
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .base import LLMNode
from ..core.config import ModelConfig
from ..core.flow import Flow
from ..core.state import ResearchAction, ResearchState, can_search_again, format_findings
from ..utils.helpers import truncate_text


# ==================== Schemas ====================

class Decision(BaseModel):
    """Whether to search again or answer now."""
    action: Literal["search", "answer"] = Field(
        description="Whether to search for more information or provide the final answer"
    )
    reasoning: str = Field(description="Why this action was chosen")
    search_query: Optional[str] = Field(
        default=None, description="Search query to use if action is 'search'"
    )
    confidence: float = Field(
        ge=0.0, le=1.0, description="Confidence in having enough information (0-1)"
    )


class SearchAnalysis(BaseModel):
    """Key information extracted from one search."""
    query: str = Field(description="The search query that was used")
    results_count: int = Field(description="Number of search results found")
    key_findings: List[str] = Field(description="Key facts extracted from the results")
    summary: str = Field(description="Brief summary of what was learned")


class FinalAnswer(BaseModel):
    """The research answer."""
    title: str = Field(description="Short title for the findings")
    answer: str = Field(description="Comprehensive answer based on the research")
    key_points: List[str] = Field(description="The most important points discovered")
    confidence_level: Literal["high", "medium", "low"] = Field(
        description="Overall confidence in the completeness of the answer"
    )
    sources_used: int = Field(description="Number of sources consulted")


# ==================== Prompts ====================

DECIDE_SYSTEM_PROMPT = """You are a research agent that decides whether to search for more information or give the final answer.

Guidelines:
- Choose "search" if you need more information to answer comprehensively
- Choose "answer" if the findings are sufficient or the search budget is spent
- Make search queries specific to get the most relevant results"""

DECIDE_PROMPT = """Question to research: "{question}"

Current context:
{context}

Searches performed so far: {search_count} of {max_searches}

Should I search for more information or provide the final answer?"""

ANALYSIS_SYSTEM_PROMPT = "You are a research assistant that analyzes web search results and extracts key information."

ANALYSIS_PROMPT = """Analyze these search results for the query "{query}" and extract the key findings.

{results}

Keep only information that helps answer research questions."""

ANSWER_SYSTEM_PROMPT = """You are a research writer. Write a well-structured answer using only the research findings provided.
Say so plainly when the findings do not cover part of the question."""

ANSWER_PROMPT = """Question: "{question}"

Research conducted: {search_count} searches

{findings}

Write the final answer."""


# ==================== Nodes ====================

class DecideNode(LLMNode):
    """Choose between another search and the final answer."""

    name = "Decide"
    generation = ModelConfig.DECIDE

    def prep(self, shared: ResearchState) -> Dict[str, Any]:
        return {
            "question": shared["question"],
            "context": format_findings(shared),
            "search_count": shared.get("search_count", 0),
            "max_searches": shared.get("max_searches", 3),
        }

    async def exec(self, prep_res: Dict[str, Any]) -> Decision:
        decision = await self.llm.structured(
            DECIDE_PROMPT.format(**prep_res),
            Decision,
            system=DECIDE_SYSTEM_PROMPT,
            **self.generation_kwargs(),
        )
        self.log.info(f"Decision: {decision.action.upper()} ({decision.reasoning[:80]})")
        return decision

    def post(self, shared: ResearchState, prep_res: Dict[str, Any], exec_res: Decision) -> str:
        shared["last_decision"] = exec_res.model_dump()

        if exec_res.action == ResearchAction.SEARCH.value and can_search_again(shared):
            return ResearchAction.SEARCH.value

        if exec_res.action == ResearchAction.SEARCH.value:
            self.log.info("Search budget spent, answering with current findings")
        return ResearchAction.ANSWER.value


class SearchNode(LLMNode):
    """
    Search the web for the last decision's query and record the findings.

    Args:
        search_tool: Object with an async ``search(query, max_results)``.
            Defaults to the shared TavilySearchTool.
    """

    name = "Search"
    generation = ModelConfig.SEARCH_ANALYSIS

    def __init__(self, search_tool: Optional[Any] = None, max_results: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self._search_tool = search_tool
        self.max_results = max_results

    @property
    def search_tool(self):
        """Lazy load the search tool."""
        if self._search_tool is None:
            from ..tools.tavily_search import get_tavily_tool
            self._search_tool = get_tavily_tool()
        return self._search_tool

    def prep(self, shared: ResearchState) -> str:
        decision = shared.get("last_decision") or {}
        return decision.get("search_query") or shared["question"]

    async def exec(self, query: str) -> SearchAnalysis:
        results = await self.search_tool.search(query, max_results=self.max_results)

        if not results:
            self.log.warning(f"No results for {query!r}")
            return SearchAnalysis(query=query, results_count=0, key_findings=[], summary="No results found.")

        combined = "\n\n".join(
            f"Title: {r.title}\nSource: {r.domain}\nContent: {truncate_text(r.content, 1500)}"
            for r in results
        )
        analysis = await self.llm.structured(
            ANALYSIS_PROMPT.format(query=query, results=combined),
            SearchAnalysis,
            system=ANALYSIS_SYSTEM_PROMPT,
            **self.generation_kwargs(),
        )
        # The model sometimes miscounts
        return analysis.model_copy(update={"query": query, "results_count": len(results)})

    def post(self, shared: ResearchState, prep_res: str, exec_res: SearchAnalysis) -> str:
        shared.setdefault("search_history", []).append(exec_res.model_dump())
        findings = shared.setdefault("all_findings", [])
        findings.extend(exec_res.key_findings)
        findings.append(exec_res.summary)
        shared["search_count"] = shared.get("search_count", 0) + 1

        self.log.info(
            f"Added {len(exec_res.key_findings)} findings "
            f"(search {shared['search_count']}/{shared.get('max_searches', 3)})"
        )
        return ResearchAction.DECIDE.value


class AnswerNode(LLMNode):
    """Write the final answer from everything gathered."""

    name = "Answer"
    generation = ModelConfig.ANSWER

    def prep(self, shared: ResearchState) -> Dict[str, Any]:
        return {
            "question": shared["question"],
            "search_count": shared.get("search_count", 0),
            "findings": format_findings(shared),
        }

    async def exec(self, prep_res: Dict[str, Any]) -> FinalAnswer:
        return await self.llm.structured(
            ANSWER_PROMPT.format(**prep_res),
            FinalAnswer,
            system=ANSWER_SYSTEM_PROMPT,
            **self.generation_kwargs(),
        )

    def post(self, shared: ResearchState, prep_res: Dict[str, Any], exec_res: FinalAnswer) -> None:
        shared["final_answer"] = exec_res.model_dump()
        self.log.info(f"Answer ready: {exec_res.title} ({exec_res.confidence_level} confidence)")
        return None


def build_research_flow(
    llm: Optional[Any] = None,
    search_tool: Optional[Any] = None,
    **kwargs,
) -> Flow:
    """Wire decide/search/answer into the research loop."""
    decide = DecideNode(llm=llm, **kwargs)
    search = SearchNode(search_tool=search_tool, llm=llm, **kwargs)
    answer = AnswerNode(llm=llm, **kwargs)

    decide - ResearchAction.SEARCH.value >> search
    decide - ResearchAction.ANSWER.value >> answer
    search - ResearchAction.DECIDE.value >> decide

    return Flow(start=decide, name="research")
