# services/generation/related_papers.py
import asyncio
import logging
import re
from typing import Dict, List

from pydantic import ValidationError

from api.models.analysis_models import RelatedPaper
from clients.semantic_scholar_client import search_semantic_scholar
from utils.sanitization import clean_text

logger = logging.getLogger(__name__)

MAX_RELATED = 5
MAX_SUMMARY_TERMS = 6
MAX_QUERY_CHARS = 200

STOPWORDS = {
    "about", "across", "after", "also", "among", "based", "because", "been", "being",
    "between", "both", "could", "does", "each", "from", "have", "into", "more", "most",
    "other", "over", "paper", "propose", "proposes", "results", "show", "shows", "such",
    "than", "that", "their", "them", "then", "there", "these", "they", "this", "those",
    "through", "using", "which", "while", "with", "within", "would", "study", "authors",
    "approach", "method", "methods", "novel", "present", "presents", "work",
}


def build_search_query(title: str, summary: str, max_terms: int = MAX_SUMMARY_TERMS) -> str:
    """
    Title followed by the leading distinctive summary terms, e.g.
    "Attention Is All You Need transformer recurrence convolutions".
    """
    query = clean_text(title)
    seen = {w.lower() for w in re.findall(r"[A-Za-z][\w-]+", query)}

    terms: List[str] = []
    for word in re.findall(r"[A-Za-z][\w-]+", clean_text(summary)):
        key = word.lower()
        if len(key) < 4 or key in STOPWORDS or key in seen:
            continue
        seen.add(key)
        terms.append(word)
        if len(terms) >= max_terms:
            break

    for term in terms:
        candidate = f"{query} {term}" if query else term
        if len(candidate) > MAX_QUERY_CHARS:
            break
        query = candidate
    return query[:MAX_QUERY_CHARS]


async def find_related_papers(title: str, summary: str, limit: int = MAX_RELATED) -> List[Dict[str, str]]:
    """
    Web-search grounding for related work. Non-critical: any failure
    degrades to an empty list and is never raised.
    """
    own_title = clean_text(title).lower()
    if not own_title:
        return []
    query = build_search_query(title, summary)

    try:
        # Ask for one extra hit since the paper itself usually ranks first
        results = await asyncio.to_thread(search_semantic_scholar, query, limit + 1)
    except Exception as e:
        logger.error(f"Error finding related papers: {e}")
        return []

    related = []
    for paper in results:
        if clean_text(paper.get("title")).lower() == own_title:
            continue
        try:
            item = RelatedPaper.model_validate(paper)
        except ValidationError:
            logger.debug(f"Dropping malformed related paper: {paper!r}")
            continue
        related.append(item.model_dump())
        if len(related) >= limit:
            break

    logger.info(f"Found {len(related)} related papers for query '{query[:80]}'")
    return related
