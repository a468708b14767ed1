"""
Core service for code review and test generation.

Builds the prompts, sends them through the ResilientExecutor (cache,
coalescing and model fallback) and turns the model's JSON reply into
domain results. A reply that is not valid JSON still yields a result, with
the raw text kept as the summary or coverage notes.
"""

import json
import logging
import re
from typing import Any, List, Optional, Sequence

# Domain Layer Imports
from artifex.domain.interfaces.ai_model import AIModel
from artifex.domain.models.ai import (
    ChatMessage,
    CodeReviewResult,
    GeneratedTestCase,
    GeneratedTestSuite,
    RepoFile,
    ReviewIssue,
)

# Infrastructure Layer Imports
from artifex.infrastructure.cache.caching_service import create_cache_key
from artifex.infrastructure.resilience.executor import ResilientExecutor

logger = logging.getLogger(__name__)

# --- Configuration ---
REVIEW_TREE_LIMIT = 200
TESTS_TREE_LIMIT = 150
REVIEW_CONTENT_LIMIT = 20000
TESTS_CONTENT_LIMIT = 15000
TREE_HASH_FILES = 20

_FENCE_START_RE = re.compile(r"^```(?:json)?\n?")
_FENCE_END_RE = re.compile(r"\n?```$")


def strip_json_fences(text: str) -> str:
    """Removes a surrounding ```json fence, if the model added one."""
    return _FENCE_END_RE.sub("", _FENCE_START_RE.sub("", text.strip())).strip()


def limited_tree(files: Sequence[RepoFile], limit: int) -> str:
    return "\n".join(f.path for f in list(files)[:limit])


def tree_hash(files: Sequence[RepoFile]) -> str:
    return ",".join(f.path for f in list(files)[:TREE_HASH_FILES])


def _subject(label: str, files: Sequence[RepoFile], content: Optional[str], content_limit: int, tree_limit: int) -> str:
    if content:
        return f'FILE: "{label}"\n```\n{content[:content_limit]}\n```'
    return f'Analyzing component: "{label}" in context of project structure:\n{limited_tree(files, tree_limit)}'


def _as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


def parse_review(text: str) -> CodeReviewResult:
    """Parses the review JSON; non-JSON replies become the summary."""
    cleaned = strip_json_fences(text or "{}")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Code review reply was not valid JSON; keeping it as plain text.")
        return CodeReviewResult(summary=cleaned)
    if not isinstance(data, dict):
        return CodeReviewResult(summary=cleaned)

    issues = [
        ReviewIssue(
            severity=str(raw.get("severity", "info")),
            category=str(raw.get("category", "Quality")),
            title=str(raw.get("title", "")),
            description=str(raw.get("description", "")),
            suggestion=str(raw.get("suggestion", "")),
            line=_as_int(raw.get("line")),
        )
        for raw in data.get("issues") or []
        if isinstance(raw, dict)
    ]
    return CodeReviewResult(
        summary=str(data.get("summary", "")),
        overall_score=_as_int(data.get("overallScore"), 0) or 0,
        issues=issues,
        strengths=_str_list(data.get("strengths")),
        recommendations=_str_list(data.get("recommendations")),
    )


def parse_test_suite(text: str) -> GeneratedTestSuite:
    """Parses the test-generation JSON; non-JSON replies become coverage notes."""
    cleaned = strip_json_fences(text or "{}")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Test generation reply was not valid JSON; keeping it as plain text.")
        return GeneratedTestSuite(framework="Unknown", coverage_notes=cleaned)
    if not isinstance(data, dict):
        return GeneratedTestSuite(framework="Unknown", coverage_notes=cleaned)

    cases = [
        GeneratedTestCase(
            name=str(raw.get("name", "")),
            type=str(raw.get("type", "unit")),
            description=str(raw.get("description", "")),
            code=str(raw.get("code", "")),
            assertions=_str_list(raw.get("assertions")),
        )
        for raw in data.get("testCases") or []
        if isinstance(raw, dict)
    ]
    return GeneratedTestSuite(
        framework=str(data.get("framework", "Unknown")),
        setup=str(data.get("setup", "")),
        test_cases=cases,
        edge_cases=_str_list(data.get("edgeCases")),
        coverage_notes=str(data.get("coverageNotes", "")),
    )


REVIEW_PROMPT = """You are a Senior Code Reviewer conducting a comprehensive code review.

{subject}

Review code quality, security, performance, best practices and likely bugs.

Return as JSON in this exact format:
{{
  "summary": "Brief overall assessment",
  "overallScore": 85,
  "issues": [{{"severity": "critical|warning|info|suggestion", "category": "Security|Performance|Quality|Bug|Style",
              "line": 42, "title": "Issue title", "description": "Explanation", "suggestion": "How to fix it"}}],
  "strengths": ["Good aspect"],
  "recommendations": ["High-level improvement"]
}}

Return ONLY the JSON, no markdown."""

TESTS_PROMPT = """You are a QA Engineer and Test Automation Expert.

{subject}

Generate unit, integration, edge-case, boundary and error-handling tests.

Return as JSON:
{{
  "framework": "Recommended framework",
  "setup": "Test setup code",
  "testCases": [{{"name": "should ...", "type": "unit|integration|edge", "description": "What it verifies",
                 "code": "test code", "assertions": ["Expected behavior"]}}],
  "edgeCases": ["Edge case description"],
  "coverageNotes": "Notes on achieving good coverage"
}}

Return ONLY the JSON, no markdown."""


class AnalysisService:
    """Orchestrates code review and test generation for a file or component."""

    def __init__(self, ai_model: AIModel, executor: ResilientExecutor, cache_ttl: Optional[float] = None):
        self.ai_model = ai_model
        self.executor = executor
        self.cache_ttl = cache_ttl
        logger.info(f"AnalysisService initialized with AI model: {ai_model.__class__.__name__}")

    async def _ask(self, prompt: str, model: str) -> str:
        messages: List[ChatMessage] = [ChatMessage(role="user", content=prompt)]
        response = await self.ai_model.send_messages(messages, model=model)
        return response.content

    async def review_code(
        self,
        label: str,
        content: Optional[str] = None,
        file_tree: Sequence[RepoFile] = (),
    ) -> CodeReviewResult:
        """Reviews one file (when `content` is given) or a component of a tree.

        Args:
            label: File path or component name.
            content: File content; the review falls back to tree context if None.
            file_tree: Repository files used as context and for the cache key.

        Returns:
            The parsed review. Served from cache for identical requests.

        Raises:
            UpstreamError: The model chain failed terminally.
        """
        prompt = REVIEW_PROMPT.format(
            subject=_subject(label, file_tree, content, REVIEW_CONTENT_LIMIT, REVIEW_TREE_LIMIT)
        )
        key = create_cache_key("codeReview", label, tree_hash(file_tree), content)

        async def review_with(model: str) -> CodeReviewResult:
            return parse_review(await self._ask(prompt, model))

        logger.debug(f"Requesting code review for {label}")
        return await self.executor.run(key, self.ai_model.fallback_models, review_with, ttl=self.cache_ttl)

    async def generate_tests(
        self,
        label: str,
        content: Optional[str] = None,
        file_tree: Sequence[RepoFile] = (),
    ) -> GeneratedTestSuite:
        """Generates test cases and edge cases for one file or component."""
        prompt = TESTS_PROMPT.format(
            subject=_subject(label, file_tree, content, TESTS_CONTENT_LIMIT, TESTS_TREE_LIMIT)
        )
        key = create_cache_key("testGen", label, tree_hash(file_tree), content)

        async def tests_with(model: str) -> GeneratedTestSuite:
            return parse_test_suite(await self._ask(prompt, model))

        logger.debug(f"Requesting test generation for {label}")
        return await self.executor.run(key, self.ai_model.fallback_models, tests_with, ttl=self.cache_ttl)
