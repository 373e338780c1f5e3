# clients/semantic_scholar_client.py
import logging
import os
import random
import time
from typing import Dict, List

import requests

logger = logging.getLogger(__name__)

S2_API_URL = "https://api.semanticscholar.org/graph/v1/paper/search"
S2_FIELDS = [
    "title",
    "year",
    "url",
    "externalIds",
    "citationCount",
]

API_KEY = os.getenv("SEMANTIC_SCHOLAR_API_KEY")


def _paper_uri(p: Dict) -> str:
    ext_ids = p.get("externalIds") or {}
    if ext_ids.get("DOI"):
        return f"https://doi.org/{ext_ids['DOI']}"
    if ext_ids.get("ArXiv"):
        return f"https://arxiv.org/abs/{ext_ids['ArXiv']}"
    return p.get("url") or ""


def search_semantic_scholar(query: str, limit: int = 5, timeout: float = 8.0) -> List[Dict]:
    """
    Paper search used as the web-search grounding for related papers.
    Returns [{"title", "uri", "year", "citation_count"}]; any failure
    returns an empty list.
    """
    params = {
        "query": query,
        "limit": limit,
        "fields": ",".join(S2_FIELDS),
    }
    headers = {"x-api-key": API_KEY} if API_KEY else {}

    max_retries = 1
    base_delay = 1
    data = None

    for attempt in range(max_retries + 1):
        try:
            resp = requests.get(S2_API_URL, params=params, headers=headers, timeout=timeout)

            if resp.status_code == 429:
                if attempt >= max_retries:
                    break
                wait_time = int(resp.headers.get("Retry-After", base_delay * (2 ** attempt)))
                wait_time = min(wait_time, 5) + random.uniform(0, 0.5)
                logger.warning(f"S2 Rate Limit (429). Retrying in {wait_time:.2f}s... (Attempt {attempt+1}/{max_retries})")
                time.sleep(wait_time)
                continue

            resp.raise_for_status()
            data = resp.json()
            break

        except requests.exceptions.HTTPError as e:
            logger.error(f"Semantic Scholar HTTP error: {e}")
            return []

        except Exception as e:
            logger.error(f"Semantic Scholar request failed: {e}", exc_info=True)
            return []

    if data is None:
        logger.error("Semantic Scholar: Max retries exceeded.")
        return []

    papers = []
    for p in data.get("data") or []:
        title = (p.get("title") or "").strip()
        uri = _paper_uri(p)
        if not title or not uri:
            continue
        papers.append({
            "title": title,
            "uri": uri,
            "year": p.get("year"),
            "citation_count": p.get("citationCount"),
        })

    return papers
