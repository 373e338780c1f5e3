# services/graph_service.py
import logging
from typing import Any, Dict, Optional

import networkx as nx

logger = logging.getLogger(__name__)


def build_concept_graph(concept_map: Optional[Dict[str, Any]]) -> nx.DiGraph:
    """
    Build a directed concept graph from LLM-extracted nodes and links.

    Node ids are kept verbatim (links reference them exactly). The first
    occurrence of a duplicated id wins. Links whose source or target is
    not a known node are dropped; malformed input never raises.
    """
    G = nx.DiGraph()
    if not concept_map:
        return G

    for node in concept_map.get("nodes") or []:
        if isinstance(node, dict):
            node_id = str(node.get("id") or "").strip()
            label = str(node.get("label") or node_id).strip()
        else:
            node_id = label = str(node).strip()
        if not node_id or node_id in G:
            continue
        G.add_node(node_id, label=label)

    dropped = 0
    for link in concept_map.get("links") or []:
        if not isinstance(link, dict):
            dropped += 1
            continue
        src = str(link.get("source") or "").strip()
        tgt = str(link.get("target") or "").strip()
        if src not in G or tgt not in G:
            dropped += 1
            continue
        G.add_edge(src, tgt, relationship=link.get("relationship") or "related to")

    if dropped:
        logger.debug("Concept map: dropped %d dangling or malformed links", dropped)

    logger.info(
        "Concept Graph: %d nodes, %d edges",
        G.number_of_nodes(),
        G.number_of_edges(),
    )
    return G


def concept_graph_to_dict(G: nx.DiGraph) -> Dict[str, Any]:
    return {
        "nodes": [{"id": n, "label": data.get("label", n)} for n, data in G.nodes(data=True)],
        "links": [
            {"source": s, "target": t, "relationship": data.get("relationship", "related to")}
            for s, t, data in G.edges(data=True)
        ],
    }


def sanitize_concept_map(concept_map: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Round-trip through the graph so only well-formed nodes and links remain."""
    return concept_graph_to_dict(build_concept_graph(concept_map))
