"""Domain models related to AI interactions.

Includes structures for AI responses and the artifacts generated from them.
"""

from dataclasses import dataclass, field
from typing import List, Optional, TypedDict

from .common import TokenUsage

# --- AI Interaction Structures ---

class ChatMessage(TypedDict):
    """Represents a message structure expected by chat completion APIs."""
    role: str
    content: str

@dataclass
class StructuredAIResponse:
    """Structured response from an AI model, including metadata."""
    content: str
    token_usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None # Which model generated the response
    latency_ms: Optional[float] = None # Time taken for the API call

# --- Generated Artifacts ---

@dataclass
class RepoFile:
    """One source file of a repository tree."""
    path: str
    size: Optional[int] = None
    sha: Optional[str] = None

@dataclass
class ReviewIssue:
    severity: str
    category: str
    title: str
    description: str = ""
    suggestion: str = ""
    line: Optional[int] = None

@dataclass
class CodeReviewResult:
    """AI code review of one file or tree node."""
    summary: str
    overall_score: int = 0
    issues: List[ReviewIssue] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

@dataclass
class GeneratedTestCase:
    name: str
    type: str
    description: str = ""
    code: str = ""
    assertions: List[str] = field(default_factory=list)

@dataclass
class GeneratedTestSuite:
    """Generated test cases and edge cases for a file."""
    framework: str
    setup: str = ""
    test_cases: List[GeneratedTestCase] = field(default_factory=list)
    edge_cases: List[str] = field(default_factory=list)
    coverage_notes: str = ""

@dataclass
class KeyValidationResult:
    """Outcome of checking a credential against its upstream."""
    valid: bool
    error: Optional[str] = None

@dataclass
class RepositoryOverview:
    """Source files of a repository plus an AI-written architecture summary."""
    owner: str
    repo: str
    files: List[RepoFile] = field(default_factory=list)
    summary: str = ""
    model_name: Optional[str] = None
