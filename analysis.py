"""
analysis.py: LLM-written SEO analysis.

Flow per request:
  build prompt -> select model -> call -> validate -> accept | retry | fallback | fail

The main analysis goes to the primary provider (Claude). A credit/quota
failure there moves the *whole* analysis, main and supplementary prompts,
to the fallback provider (Together). Output that fails the structural
checks counts as a failed attempt.
"""

import logging
import re
from typing import Optional

from errors import (
    ContentValidationError,
    ProviderError,
    ProviderUnavailableError,
    QuotaError,
)
from http_client import RetryPolicy
from llm import LLMProvider
from schemas import clean_domain

logger = logging.getLogger("seo-analyzer.analysis")

MIN_CONTENT_LENGTH = 1000
MIN_SECTIONS = 3
MIN_BULLET_POINTS = 10
REQUIRED_PHRASE = "seo analysis"

INSIGHTS_HEADING = "### **🔧 Additional Technical Insights**"

# =============================================================================
# Prompts
# =============================================================================

ANALYSIS_SYSTEM = """You are an SEO expert. Provide detailed SEO analysis in clear, structured markdown.
Start with a level-1 title containing the words "SEO Analysis".
Every criterion section must have an **Analysis:** block and an **Action Items:** block, both as "- " bullet lists.
Be specific and actionable. Use real examples from the website where possible."""

ANALYSIS_PROMPT = """Analyze the website {url}{keyword_clause} and provide a detailed SEO analysis in exactly this format:

# SEO Analysis for {domain}

**URL:** {url}
{keyword_line}
[2-3 sentence introduction about the analysis scope]

## Content Depth and Quality
**Analysis:**
- [Point about content comprehensiveness]
- [Point about content freshness]
- [Point about user engagement elements]{keyword_content}

**Action Items:**
- ✅ [Specific, actionable recommendation]
- ✅ [Specific, actionable recommendation]

## URL Structure
**Analysis:**
- [Point about URL format]
- [Point about keyword usage in URLs]

**Action Items:**
- ✅ [Specific, actionable recommendation]

## H1 Title Tag
**Analysis:**
- [Point about current title tags]
- [Point about keyword placement]

**Action Items:**
- ✅ [Specific, actionable recommendation]

## Internal Links
**Analysis:**
- [Point about internal linking structure]
- [Point about anchor text]

**Action Items:**
- ✅ [Specific, actionable recommendation]

## Meta Description
**Analysis:**
- [Point about current meta descriptions]
- [Point about click-through potential]

**Action Items:**
- ✅ [Specific, actionable recommendation]

## Readability
**Analysis:**
- [Point about content structure]
- [Point about reading level]

**Action Items:**
- ✅ [Specific, actionable recommendation]

## Priority Recommendations
1. 🚀 [Most critical fix]
2. 🚀 [Second most important improvement]
3. 🚀 [Third key optimization]
{semantic_section}
## Final Verdict
[Summary of key findings and the priority recommendations]
"""

SEMANTIC_SECTION = """
## Semantic Keywords
Related search terms worth targeting alongside "{keyword}":
- [Semantic keyword 1]
- [Semantic keyword 2]
- [Semantic keyword 3]
- [Semantic keyword 4]
- [Semantic keyword 5]
"""

INSIGHTS_PROMPT = """Provide additional technical SEO insights and recommendations that complement a main SEO analysis of this website.

Website: {url}{keyword_line}

Focus on:
1. Technical SEO aspects not covered in the main analysis
2. Advanced optimization opportunities
3. Specific implementation details for the recommendations
4. Emerging SEO trends that could be relevant
5. Competitive analysis insights
6. Performance optimization suggestions

Format your response as a detailed technical supplement in markdown."""


def build_analysis_prompt(url: str, keyword: Optional[str] = None) -> str:
    if keyword:
        return ANALYSIS_PROMPT.format(
            url=url,
            domain=clean_domain(url),
            keyword_clause=f' focusing on the keyword "{keyword}"',
            keyword_line=f'**Target Keyword:** "{keyword}"\n',
            keyword_content=(
                f'\n- [Keyword usage in main content]\n- [Semantic relevance to "{keyword}"]'
            ),
            semantic_section=SEMANTIC_SECTION.format(keyword=keyword),
        )
    return ANALYSIS_PROMPT.format(
        url=url,
        domain=clean_domain(url),
        keyword_clause="",
        keyword_line="",
        keyword_content="",
        semantic_section="",
    )


def build_insights_prompt(url: str, keyword: Optional[str] = None) -> str:
    return INSIGHTS_PROMPT.format(
        url=url,
        keyword_line=f"\nTarget Keyword: {keyword}" if keyword else "",
    )


def combine_sections(main: str, insights: Optional[str]) -> str:
    if not insights:
        return main
    return f"{main}\n\n---\n\n{INSIGHTS_HEADING}\n\n{insights}"


# =============================================================================
# Structural validation
# =============================================================================

_HASH_HEADER = re.compile(r"^#+\s+.*$", re.MULTILINE)
_NUMBERED_BOLD = re.compile(r"^\d+\.\s+\*\*.*\*\*$", re.MULTILINE)
_BOLD_ONLY = re.compile(r"^\*\*.*\*\*$", re.MULTILINE)


def content_stats(content: str) -> dict:
    hash_headers = _HASH_HEADER.findall(content)
    numbered = _NUMBERED_BOLD.findall(content)
    bold = _BOLD_ONLY.findall(content)
    return {
        "length": len(content),
        "has_markdown": "#" in content or "**" in content,
        "sections": len(hash_headers),
        "numbered_sections": len(numbered),
        "bold_sections": len(bold),
        "total_sections": len(hash_headers) + len(numbered) + len(bold),
        "bullet_points": content.count("\n-"),
        "has_title": REQUIRED_PHRASE in content.lower(),
        "first_line": content.split("\n", 1)[0][:120],
    }


def has_minimum_content(content: str) -> bool:
    stats = content_stats(content)
    return (
        stats["length"] >= MIN_CONTENT_LENGTH
        and stats["has_markdown"]
        and stats["total_sections"] >= MIN_SECTIONS
        and stats["bullet_points"] >= MIN_BULLET_POINTS
        and stats["has_title"]
    )


# =============================================================================
# Orchestrator
# =============================================================================

def _retryable(exc: BaseException) -> bool:
    if isinstance(exc, (QuotaError, ProviderUnavailableError)):
        return False
    return isinstance(exc, (ProviderError, ContentValidationError))


class AnalysisOrchestrator:
    def __init__(
        self,
        primary: Optional[LLMProvider],
        fallback: Optional[LLMProvider],
        retry: RetryPolicy,
        supplementary: bool = True,
    ):
        self.primary = primary
        self.fallback = fallback
        self.retry = retry
        self.supplementary = supplementary

    async def generate(self, provider: LLMProvider, prompt: str, *, validate: bool) -> str:
        model = await provider.select_model()

        async def attempt() -> str:
            text = await provider.complete(model, prompt, ANALYSIS_SYSTEM if validate else None)
            if validate and not has_minimum_content(text):
                stats = content_stats(text)
                logger.info(f"{provider.name}/{model}: incomplete response {stats}")
                raise ContentValidationError(stats)
            return text

        return await self.retry.run(attempt, retryable=_retryable, label=f"{provider.name}/{model}")

    async def analyze(self, url: str, keyword: Optional[str] = None) -> str:
        main_provider = self.primary or self.fallback
        if main_provider is None:
            raise ProviderUnavailableError("llm", "no LLM provider configured")
        insights_provider = self.fallback or self.primary

        logger.info(f"Analysis starting for {url} (keyword={keyword!r}) via {main_provider.name}")
        main_prompt = build_analysis_prompt(url, keyword)
        try:
            main = await self.generate(main_provider, main_prompt, validate=True)
        except QuotaError as e:
            if self.fallback is None or main_provider is self.fallback:
                raise
            logger.warning(f"{main_provider.name} out of credit ({e}) - switching to {self.fallback.name} for the whole analysis")
            main_provider = insights_provider = self.fallback
            main = await self.generate(main_provider, main_prompt, validate=True)

        if not self.supplementary:
            return main

        insights = await self.generate(
            insights_provider, build_insights_prompt(url, keyword), validate=False
        )
        return combine_sections(main, insights)
