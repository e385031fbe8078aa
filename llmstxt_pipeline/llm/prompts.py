"""
Prompt templates for page summaries and site descriptions.
"""

from typing import Sequence

from llmstxt_pipeline.models import UrlSummary

SYSTEM_PROMPT = (
    "You write short, factual summaries of web pages for an llms.txt index. "
    "You always answer with valid JSON only."
)

MAX_DESCRIPTION_PAGES = 50


def build_batch_summary_prompt(items: Sequence[UrlSummary]) -> str:
    """
    Build the prompt that summarizes every page of a batch in one call.

    The model must answer with a JSON array holding one object per page,
    in the same order as the pages are listed.
    """
    pages_text = "\n\n".join(
        f"Page {i}:\nTitle: {item.title}\nURL: {item.url}\nContent:\n{item.text}"
        for i, item in enumerate(items, start=1)
    )
    return f"""You are a technical documentation summarizer. Your task is to create concise summaries for multiple web pages.

{pages_text}

Instructions:
- Create a summary for EACH page in 2-3 sentences
- Focus on the main purpose and key information
- Use clear, professional language
- Do not include meta information like "this page describes"
- Write in present tense
- Maintain the SAME ORDER as the pages above

Return ONLY a JSON array with exactly {len(items)} items:
[{{"summary": "..."}}]"""


def build_description_prompt(items: Sequence[UrlSummary]) -> str:
    """Build the prompt for the one-paragraph site description."""
    summaries_text = "\n".join(
        f"{i}. {item.title}: {item.summary}" for i, item in enumerate(items[:MAX_DESCRIPTION_PAGES], start=1)
    )
    return f"""You are analyzing a website based on summaries of its pages. Create a brief, comprehensive description of what this website offers.

Page summaries:
{summaries_text}

Instructions:
- Write a single paragraph (2-4 sentences)
- Describe the overall purpose and main topics of the website
- Be concise and informative
- Use professional language
- Do not mention "this website" or similar phrases, write directly about the content

Return ONLY a JSON object:
{{"description": "..."}}"""


def build_retry_prompt(original_prompt: str, error: Exception, attempt: int, retry_hint: str = "") -> str:
    """Restate the format requirements after a response failed validation."""
    hint = f"\n{retry_hint}\n" if retry_hint else ""
    return f"""**CRITICAL ERROR - Attempt {attempt}**: Your previous response did not match the required format.
Error: {error}
{hint}
Requirements:
1. Return ONLY valid JSON, no markdown code blocks or extra text
2. Follow the exact structure requested below
3. Do not omit any required field

Original request:
{original_prompt}"""
