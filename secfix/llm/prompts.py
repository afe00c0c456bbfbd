"""
LLM Prompts
===========
Prompts for the build-failure resolution planner.

Prompt Design Rules:
    - Only safe operations may be suggested: package add/remove and
      project-manifest property edits
    - No source-code modifications or refactoring
    - Prior attempts are listed so known-ineffective fixes are not repeated
    - The response must be a single JSON object in the documented shape
"""

PLANNER_SYSTEM_PROMPT = "You are a .NET build error analyzer. Respond only with valid JSON."

RESPONSE_FORMAT = """{
  "rootCause": "Brief root cause description",
  "strategy": "ai-resolution",
  "breakingChanges": [
    {
      "location": "File:LineNumber or ClassName.MethodName",
      "affectedCode": "Exact code snippet from the error",
      "oldSignature": "Old API/method signature",
      "newSignature": "New API/method signature",
      "guidance": "Step-by-step instructions for the user to fix this",
      "severity": "critical|high|medium"
    }
  ],
  "safeOperations": [
    {
      "kind": "package-add|package-remove|config-edit",
      "command": "Full dotnet CLI command for package-add/package-remove",
      "targetFile": "Project file to edit for config-edit (relative path)",
      "property": "MSBuild property to set for config-edit",
      "value": "New property value for config-edit",
      "rationale": "Why this operation is suggested"
    }
  ]
}"""


def format_prior_attempts(attempts) -> str:
    """One line per prior attempt, or "First iteration"."""
    lines = [
        f"- Attempt {a.attempt_number} ({a.strategy}): {a.applied_change_description or 'No fixes applied'}"
        for a in attempts
    ]
    return "\n".join(lines) if lines else "First iteration"


def build_resolution_prompt(
    diagnostics: str,
    prior_attempts,
    target_framework: str,
    project_path: str,
) -> str:
    """User prompt for one planning call."""
    return f"""Analyze this .NET build failure and provide breaking changes analysis.

PROJECT CONTEXT:
Framework: {target_framework}
Project Path: {project_path}

PRIOR ATTEMPTS:
{format_prior_attempts(prior_attempts)}

BUILD ERROR OUTPUT:
{diagnostics}

REQUIRED RESPONSE FORMAT (JSON):
{RESPONSE_FORMAT}

IMPORTANT:
- Only suggest safe operations: dotnet package add/remove commands and project file property edits
- Do NOT suggest code modifications or refactoring
- Do NOT repeat an operation listed under PRIOR ATTEMPTS
- Provide detailed fix guidance for each breaking change
- Include file locations and line numbers where errors occurred"""
