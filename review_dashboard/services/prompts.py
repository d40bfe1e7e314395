"""
Review Prompt Templates

The system instruction, the four review-type templates and the JSON
response contract the orchestrator asks providers to follow.
"""

from typing import Any, Dict, List, Mapping

from review_dashboard.models import ReviewType


SYSTEM_INSTRUCTION = """You are a senior software engineer conducting a code review of a merge request.

IMPORTANT: You do not post positive comments. Report only defects: issues, problems and areas that must be improved. Do not mention anything that is working correctly, do not praise good implementations, and do not add confirmatory feedback.

Focus exclusively on:
- Code quality issues and violations of best practices
- Potential bugs, errors, or problematic code patterns
- Security vulnerabilities and concerns
- Performance problems and inefficiencies
- Maintainability issues and code readability problems
- Missing error handling, edge cases, or validation
- Architecture or design flaws
- Code smells and anti-patterns"""


RESPONSE_CONTRACT = """RESPONSE FORMAT:
Provide your response in the following JSON structure:

{
  "summary": "Overall review summary",
  "score": 8,
  "comments": [
    {
      "file_path": "src/example.js",
      "line_number": 15,
      "severity": "error",
      "title": "Issue title",
      "content": "Description of the issue",
      "code_snippet": "// Original problematic code",
      "suggested_fix": "// Corrected version of the code"
    }
  ]
}

Rules:
- severity can be: "critical", "error", "warning", "info"
- line_number should be the actual line number from the code changes, or null
- code_snippet should contain the original problematic code
- suggested_fix should contain the corrected version of the code
- Only include comments for actual issues that need fixing
- Score from 1-10 where 1-3=critical, 4-6=significant, 7-8=minor, 9-10=minimal issues

Provide ONLY the JSON response, no additional text."""


REVIEW_TEMPLATES: Dict[ReviewType, Dict[str, str]] = {
    ReviewType.GENERAL: {
        "name": "General Code Review",
        "description": "Comprehensive code review covering best practices, readability, and maintainability",
        "prompt": """Review this code change and report problems with:
1. Code quality and best practices
2. Potential bugs or issues
3. Performance considerations
4. Security implications
5. Readability and maintainability
6. Missing test coverage""",
    },
    ReviewType.SECURITY: {
        "name": "Security Review",
        "description": "Focused on security vulnerabilities and best practices",
        "prompt": """Perform a security-focused review of this code change. Look for:
1. SQL injection vulnerabilities
2. XSS vulnerabilities
3. Authentication/authorization issues
4. Input validation problems
5. Sensitive data exposure
6. Cryptographic issues
7. API security concerns

Give specific remediation steps for every finding.""",
    },
    ReviewType.PERFORMANCE: {
        "name": "Performance Review",
        "description": "Focused on performance optimization and efficiency",
        "prompt": """Review this code change for performance problems:
1. Algorithm efficiency
2. Memory usage
3. Database query optimization
4. Missed caching opportunities
5. Network request overhead
6. Resource utilization
7. Scalability concerns

Give a specific fix for every finding.""",
    },
    ReviewType.TESTING: {
        "name": "Test Review",
        "description": "Focused on test quality and coverage",
        "prompt": """Review the test coverage and test quality of this change:
1. Test completeness and coverage gaps
2. Test case design
3. Unhandled edge cases
4. Missing integration tests
5. Missing performance tests
6. Test maintainability
7. Inappropriate mock usage

Name the tests that must be added.""",
    },
}


def list_templates() -> List[Dict[str, str]]:
    """Templates as exposed by GET /api/ai/templates."""
    return [
        {"id": review_type.value, **template}
        for review_type, template in REVIEW_TEMPLATES.items()
    ]


def build_review_prompt(
    merge_request: Mapping[str, Any],
    review_type: ReviewType,
    diff_text: str
) -> str:
    """
    Render the user prompt for one review.

    Args:
        merge_request: Merge request row (title, description, branches, author)
        review_type: Normalized review type
        diff_text: Prepared diff text, may be empty

    Returns:
        Prompt text
    """
    template = REVIEW_TEMPLATES[review_type]

    return f"""Please review this merge request and provide feedback:

Title: {merge_request.get("title") or ""}
Description: {merge_request.get("description") or "No description provided"}
Source Branch: {merge_request.get("source_branch") or ""}
Target Branch: {merge_request.get("target_branch") or ""}
Author: {merge_request.get("author_username") or "unknown"}

CODE CHANGES:
{diff_text or "No code changes available"}

REVIEW FOCUS ({template["name"]}):
{template["prompt"]}

{RESPONSE_CONTRACT}"""
