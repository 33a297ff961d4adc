from __future__ import annotations

import json
from typing import Any, Dict

from resurrect.models import ErrorContext, StageId
from resurrect.prompting.meta import NEGATIVE_RULES_V1


MAX_LOG_LINES = 50


def json_for_prompt(obj: Any, *, max_chars: int = 12_000) -> str:
    """
    Render JSON for prompts with a hard size cap (keeps head + tail when too large).
    """
    try:
        s = json.dumps(obj, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        s = repr(obj)
    if len(s) <= max_chars:
        return s
    keep = max(2000, max_chars // 2)
    return s[:keep] + "\n...<TRUNCATED_FOR_CONTEXT_WINDOW>...\n" + s[-keep:]


def render_analyze_prompt(ctx: ErrorContext, *, max_log_lines: int = MAX_LOG_LINES) -> str:
    logs = list(ctx.error_logs)[: max(0, max_log_lines)]
    log_block = "\n".join(logs) if logs else "No detailed logs available"
    return "\n".join(
        [
            "Analyze this build error and identify the root cause:",
            "",
            f"Project: {ctx.project_name}",
            f"Branch: {ctx.branch}",
            f"Error Message: {ctx.error_message}",
            "Error Logs:",
            log_block,
            "",
            "Provide a JSON response with:",
            "{",
            '  "errorType": "string (e.g., \'missing_module\', \'syntax_error\', \'type_error\')",',
            '  "rootCause": "string explaining the root cause",',
            '  "affectedFile": "string with file path",',
            '  "affectedLine": "number or null",',
            '  "severity": "low | medium | high | critical",',
            '  "suggestedSearchQuery": "string for searching solutions"',
            "}",
        ]
    )


def render_search_prompt(analysis: Dict[str, Any]) -> str:
    return "\n".join(
        [
            "Based on this error analysis, suggest the best fix:",
            "",
            f"Error Analysis: {json_for_prompt(analysis)}",
            "",
            "Search the web mentally for common solutions to this type of error.",
            "",
            "Provide a JSON response with:",
            "{",
            '  "solutions": [',
            "    {",
            '      "description": "string describing the solution",',
            '      "confidence": "number 0-100",',
            '      "steps": ["array of steps to implement"],',
            '      "codeChanges": [',
            "        {",
            '          "file": "string file path",',
            '          "action": "create | modify | delete",',
            '          "content": "string with new/modified content"',
            "        }",
            "      ]",
            "    }",
            "  ],",
            '  "recommendedSolutionIndex": "number index of best solution"',
            "}",
        ]
    )


def render_generate_prompt(analysis: Dict[str, Any], solutions: Dict[str, Any]) -> str:
    rules = "\n".join(f"- {r}" for r in NEGATIVE_RULES_V1)
    return "\n".join(
        [
            "Generate the actual code fix based on this solution:",
            "",
            f"Error Analysis: {json_for_prompt(analysis)}",
            f"Selected Solution: {json_for_prompt(solutions)}",
            "",
            "Rules:",
            rules,
            "",
            "Provide a JSON response with:",
            "{",
            '  "branchName": "resurrect-fix",',
            '  "commitMessage": "string describing the fix",',
            '  "changes": [',
            "    {",
            '      "file": "string file path",',
            '      "action": "create | modify | delete",',
            '      "content": "string with the complete fixed file content"',
            "    }",
            "  ],",
            '  "prTitle": "string for PR title",',
            '  "prDescription": "string explaining the fix"',
            "}",
        ]
    )


def render_prompt(stage: StageId, **context: Any) -> str:
    if stage == StageId.analyze:
        return render_analyze_prompt(context["ctx"], max_log_lines=context.get("max_log_lines", MAX_LOG_LINES))
    if stage == StageId.search:
        return render_search_prompt(context["analysis"])
    if stage == StageId.generate:
        return render_generate_prompt(context["analysis"], context["solutions"])
    raise ValueError(f"stage {stage.value} has no prompt")
