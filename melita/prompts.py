"""
Prompt templates for flowchart and complexity analysis.
"""

OCR_INSTRUCTION = "Extract raw code. No markdown."


def build_analysis_prompt(code: str, max_nodes: int = 25) -> str:
    """
    Build the analysis prompt for Gemini.

    Args:
        code: Source code to analyze
        max_nodes: Upper bound on flowchart nodes

    Returns:
        Formatted prompt string
    """
    return f"""
You are an expert Algorithms Professor. Analyze this code.

### 1. VALIDATION
If input is NOT code, return: {{"mermaidGraph": "graph TD; E[Not Code]", "explanation": "Invalid input."}}

### 2. STRATEGY
- **SIMPLE CODE:** Visualize fully.
- **HUGE LOOPS (>10 steps):** Summarize (Start -> ... -> End).
- **Keep nodes < {max_nodes}.**

### 3. JSON OUTPUT
{{
  "explanation": "Markdown summary. Escape quotes!",
  "timeComplexity": "Big O",
  "spaceComplexity": "Big O",
  "optimizationTip": "Short tip.",
  "mermaidGraph": "graph TD; ..."
}}

### MERMAID STYLE
- style START fill:#d1fae5,stroke:#059669,stroke-width:2px
- style LOOP fill:#dbeafe,stroke:#2563eb,stroke-width:2px
- style SKIP fill:#f3f4f6,stroke:#9ca3af,stroke-width:2px,stroke-dasharray: 5 5
- style END fill:#fef3c7,stroke:#d97706,stroke-width:2px

CODE:
{code}
"""
