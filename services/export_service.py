# services/export_service.py
from typing import Any, Dict, List
import logging
import os

logger = logging.getLogger(__name__)


class ExportService:
    """
    Renders an analysis result as Markdown. Slices that have not loaded
    (or failed) are left out rather than rendered empty.
    """

    @staticmethod
    def _evidence_points(points: List[Dict[str, str]]) -> List[str]:
        lines = []
        for p in points or []:
            lines.append(f"- **{p.get('point', '')}**")
            lines.append(f"  > *Evidence: \"{p.get('evidence', '')}\"*")
        return lines

    @staticmethod
    def export_markdown(result: Dict[str, Any]) -> str:
        """
        Args:
            result: AnalysisResult dict, possibly partial.

        Returns:
            str: The Markdown document.
        """
        if not result.get("title"):
            raise ValueError("Nothing to export: the analysis has no title yet")

        lines = [f"# Analysis of: {result['title']}", ""]

        if result.get("takeaways"):
            lines.append("## Key Takeaways")
            lines.extend(f"- {t}" for t in result["takeaways"])
            lines.append("")

        if result.get("overallSummary"):
            lines += ["## Overall Summary", result["overallSummary"], ""]

        aspects = result.get("aspects")
        if aspects:
            lines += [
                "## Aspects",
                "### Problem Statement", aspects.get("problemStatement", ""), "",
                "### Methodology", aspects.get("methodology", ""), "",
                "### Key Findings",
            ]
            lines.extend(ExportService._evidence_points(aspects.get("keyFindings")))
            lines.append("")

        critique = result.get("critique")
        if critique:
            lines += ["## Critique", "### Strengths"]
            lines.extend(ExportService._evidence_points(critique.get("strengths")))
            lines += ["", "### Weaknesses"]
            lines.extend(ExportService._evidence_points(critique.get("weaknesses")))
            lines.append("")

        novelty = result.get("novelty")
        future_work = result.get("futureWork")
        if novelty or future_work:
            lines.append("## Novelty & Future Work")
            if novelty:
                lines += [
                    "### Novelty Assessment", novelty.get("assessment", ""), "",
                    f"*Comparison:* {novelty.get('comparison', '')}", "",
                ]
            if future_work:
                lines.append("### Future Work")
                lines.extend(f"- {fw}" for fw in future_work)
                lines.append("")

        if result.get("relatedPapers"):
            lines.append("## Related Papers")
            lines.extend(f"- [{p['title']}]({p['uri']})" for p in result["relatedPapers"])
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    @staticmethod
    def export_filename(file_name: str) -> str:
        stem = os.path.splitext(os.path.basename(file_name or ""))[0]
        return f"{stem}-analysis.md" if stem else "analysis.md"
