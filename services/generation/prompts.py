#File: services/generation/prompts.py
from typing import Dict

# Character budgets applied to the document text per task
TEXT_LIMITS: Dict[str, int] = {
    "validation": 15000,
    "quiz": 32000,
    "core_analysis": 100000,
    "advanced_analysis": 500000,
    "references": 500000,
    "concept_map": 60000,
    "presentation": 60000,
    "synthesis_per_document": 40000,
    "figure": 20000,
    "regenerate_summary": 32000,
    "grounding_summary": 32000,
}

SYSTEM_PROMPTS: Dict[str, str] = {
    "analyst": """You are an expert AI research assistant.

You must ground every statement in the provided document.
Evidence fields must be direct, verbatim quotes copied from the document.
You must not invent citations, datasets, numbers, or named entities.
Respond ONLY with a JSON object following the specified schema.""",

    "classifier": """You are a document classifier.
Respond ONLY with a JSON object following the specified schema.""",

    "chat": """You are Prism, an AI research assistant. Your task is to answer questions about a scientific paper based on the provided summary. All your answers must be grounded in the context. Be concise, accurate, and helpful. Do not mention that you are an AI.

Document Summary:
---
{summary}
---""",
}

PROMPT_TEMPLATES: Dict[str, str] = {
    "validation": """
TASK:
Determine whether the provided text is a scientific or academic research paper.
Consider the structure (abstract, introduction, methods, results, conclusion),
the language, and the presence of citations.

Document Text:
---
{text}
---
""",

    "quiz": """
TASK:
Based on the following scientific paper text, generate a 5-question multiple-choice
quiz to test a reader's comprehension. Each question must have exactly 4 options and
the answer must be copied exactly from one of the options. Cover key concepts,
methodologies, and findings.

Document Text:
---
{text}
---
""",

    "core_analysis": """
TASK:
Quickly analyze the following scientific paper and extract the most essential
information for this audience: {persona}.

1. Identify the paper's full title.
2. Extract the 3-5 most critical, high-level key takeaways.
3. Write a concise, one-paragraph overall summary.
4. Summarize the problem statement and methodology, and list the key findings,
   each supported by a verbatim quote from the paper.

Scientific Paper Text:
---
{text}
---
""",

    "advanced_analysis": """
TASK:
Continue an analysis of the scientific paper below for this audience: {persona}.
The paper is titled: {title}

1. Critique: the paper's strengths and weaknesses, each with verbatim evidence.
2. Novelty: assess its contribution and compare it to prior art.
3. Future Work: actionable research questions or experimental next steps.
4. Glossary: 5-10 technical terms a reader of this audience may not know, with definitions.
5. Ideation: 3 new, testable hypotheses inspired by the paper, each with a rationale.

Scientific Paper Text:
---
{text}
---
""",

    "references": """
TASK:
Extract the bibliography of the scientific paper below.
Return every cited work formatted in APA style, and the same works as BibTeX entries.
Only include works that appear in the paper's reference list.

Scientific Paper Text:
---
{text}
---
""",

    "concept_map": """
TASK:
Extract a concept map from the scientific paper below.
Nodes are the 8-15 most important concepts (id: short unique slug, label: display name).
Links connect node ids with a short relationship phrase (e.g. "improves", "is evaluated on").
Every link source and target must be the id of a listed node.

Scientific Paper Text:
---
{text}
---
""",

    "presentation": """
TASK:
Draft a presentation of the scientific paper below for this audience: {persona}.
Produce 6-10 slides. Each slide has a title and 3-5 short bullet points.
Start with a title slide and end with a conclusions slide.

Scientific Paper Text:
---
{text}
---
""",

    "synthesis": """
TASK:
You are given {count} research documents. Produce a cross-document synthesis:
- overallSynthesis: a multi-paragraph synthesis of what the documents say together.
- commonThemes: themes shared by several documents, listing the document labels.
- conflictingFindings: findings where documents disagree, listing the document labels.
- conceptEvolution: how the key concepts evolve or relate across the documents.
Refer to documents only by the labels given below.

{documents}
""",

    "synthesis_document": """
=== DOCUMENT: {label} ===
{text}
""",

    "figure": """
The user has selected a specific figure from a scientific paper. Based on the overall
document context and the provided image, explain what this figure represents. Describe
its components, what the data shows, and its significance to the paper's main arguments.

Document Context (abbreviated):
---
{text}
---
""",

    "regenerate_summary": """
Based on the provided scientific paper text, generate a new summary.

Instructions:
1. Target Audience: Write for {persona}.
2. Length: The summary should be {length}.
3. Technical Depth: Use {depth}.

Document Text:
---
{text}
---

Now, provide only the regenerated summary as a single string.
""",

    "grounding_summary": """
Create a concise, dense, fact-based summary of the following document. It will be used
as context for a Q&A chat, so include key terms, methodologies, and findings.

Document Text:
---
{text}
---
""",
}
