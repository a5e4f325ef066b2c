"""
Structured extraction: resume text to a validated ResumeProfile.

ExtractionNode handles the single ``resume_text`` of the shared context;
BatchExtractionNode runs the same extraction once per entry of ``resumes``,
each with its own retry budget.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .base import LLMNode
from ..core.config import ModelConfig
from ..core.flow import Flow
from ..core.node import BatchNode, ParallelBatchNode
from ..core.state import ExtractionState


# ==================== Schema ====================

class WorkExperience(BaseModel):
    title: str = Field(description="Job title")
    company: str = Field(description="Employer name")
    start: Optional[str] = Field(default=None, description="Start date or year")
    end: Optional[str] = Field(default=None, description="End date or year, 'present' if current")
    highlights: List[str] = Field(default_factory=list, description="Notable achievements")


class Education(BaseModel):
    degree: str = Field(description="Degree and field of study")
    institution: str = Field(description="School or university")
    years: Optional[str] = Field(default=None, description="Attendance period")
    details: List[str] = Field(default_factory=list, description="GPA, honors, coursework")


class ResumeProfile(BaseModel):
    """Candidate profile extracted from a resume."""
    name: str = Field(description="Candidate's full name")
    email: Optional[str] = Field(default=None, description="Email address")
    phone: Optional[str] = Field(default=None, description="Phone number")
    location: Optional[str] = Field(default=None, description="City and region")
    experience: List[WorkExperience] = Field(default_factory=list)
    education: List[Education] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list, description="Technical and professional skills")


EXTRACTION_SYSTEM_PROMPT = "You are an expert at extracting structured data from resumes. Only use facts stated in the text."

EXTRACTION_PROMPT = """Extract the candidate profile from this resume.
Leave a field empty when the resume does not state it.

Resume text:
{resume}"""


SAMPLE_RESUME = """John Smith
Email: john.smith@email.com
Phone: (555) 123-4567
Location: San Francisco, CA

EXPERIENCE
Senior Software Engineer | TechCorp Inc. | 2020-2023
- Led development of microservices architecture serving 1M+ users
- Implemented CI/CD pipelines reducing deployment time by 60%

Software Engineer | StartupXYZ | 2018-2020
- Built full-stack web applications using React and Node.js

EDUCATION
Master of Science in Computer Science | Stanford University | 2016-2018
- GPA: 3.8/4.0

SKILLS
Python, JavaScript, Go, PostgreSQL, AWS, Docker, Kubernetes
"""


def require_text(resume_text: Optional[str], label: str = "Resume") -> str:
    """Return ``resume_text``, rejecting blank input before any model call."""
    if not resume_text or not resume_text.strip():
        raise ValueError(f"{label} text is empty")
    return resume_text


async def extract_profile(node: LLMNode, resume_text: str) -> ResumeProfile:
    return await node.llm.structured(
        EXTRACTION_PROMPT.format(resume=resume_text),
        ResumeProfile,
        system=EXTRACTION_SYSTEM_PROMPT,
        **node.generation_kwargs(),
    )


# ==================== Nodes ====================

class ExtractionNode(LLMNode):
    """Extract one profile from ``resume_text``."""

    name = "Extraction"
    generation = ModelConfig.EXTRACTION

    def prep(self, shared: ExtractionState) -> str:
        return require_text(shared.get("resume_text"))

    async def exec(self, resume_text: str) -> ResumeProfile:
        return await extract_profile(self, resume_text)

    def post(self, shared: ExtractionState, prep_res: str, exec_res: ResumeProfile) -> None:
        shared["extracted_profile"] = exec_res.model_dump()
        self.log.info(f"Extracted profile for {exec_res.name}")
        return None


class BatchExtractionNode(LLMNode, BatchNode):
    """Extract a profile from every entry of ``resumes``, in order."""

    name = "BatchExtraction"
    generation = ModelConfig.EXTRACTION

    def prep(self, shared: ExtractionState) -> List[Tuple[str, str]]:
        return [
            (r["id"], require_text(r["text"], label=f"Resume {r['id']}"))
            for r in shared.get("resumes", [])
        ]

    async def exec(self, item: Tuple[str, str]) -> Dict[str, Any]:
        resume_id, text = item
        profile = await extract_profile(self, text)
        return {"id": resume_id, "profile": profile.model_dump()}

    def post(self, shared: ExtractionState, prep_res: Any, exec_res: List[Dict[str, Any]]) -> None:
        shared["extracted_profiles"] = exec_res
        self.log.info(f"Extracted {len(exec_res)} profiles")
        return None


class ParallelBatchExtractionNode(LLMNode, ParallelBatchNode):
    """BatchExtractionNode that sends resumes to the model concurrently."""

    name = "ParallelBatchExtraction"
    generation = ModelConfig.EXTRACTION

    prep = BatchExtractionNode.prep
    exec = BatchExtractionNode.exec
    post = BatchExtractionNode.post


def build_extraction_flow(
    batch: bool = False,
    concurrency_limit: Optional[int] = None,
    llm: Optional[Any] = None,
) -> Flow:
    """
    Single-node extraction flow.

    Args:
        batch: Extract every entry of ``resumes`` instead of ``resume_text``
        concurrency_limit: When set with ``batch``, extract that many at once
        llm: Client with a ``structured`` coroutine
    """
    if not batch:
        node = ExtractionNode(llm=llm)
    elif concurrency_limit:
        node = ParallelBatchExtractionNode(llm=llm, concurrency_limit=concurrency_limit)
    else:
        node = BatchExtractionNode(llm=llm)
    return Flow(start=node, name="extraction")
