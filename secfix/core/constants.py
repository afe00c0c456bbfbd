"""
Constants
Centralised storage for labels, markers, file names and commit conventions.
"""
# Generated metadata file at the repository root; the only file the merge
# gate is allowed to auto-resolve on conflict.
DEPENDENCY_GRAPH_FILE = "dependency-graph.json"

# Sentinel placed in every issue body this tool creates. Issue closure is
# refused unless the body contains it.
AUTO_GENERATED_MARKER = "<!-- secfix:auto-generated -->"

COMMIT_PREFIX = "Security fix:"
BRANCH_PREFIX = "security-fix/"
BACKUP_SUFFIX = ".bak"

# Attempt strategy tags
STRATEGY_BUILD_SUCCESS = "build-success"
STRATEGY_CODE_FIX = "code-level-fixes"
STRATEGY_AI_RESOLUTION = "ai-resolution"
STRATEGY_PLANNING_FAILED = "ai-analysis-failed"

SEVERITY_LEVELS = ("critical", "high", "medium", "low", "unknown")
