"""
Diff Parser Module

Turns the file changes of a merge request into bounded, prompt-ready text.

Design Decisions:
- Only lines after the first hunk header count as diff content
- ``review_max_lines`` caps each file's diff, ``review_max_files`` caps the
  number of files; both are user settings
- Each file is labelled with its new/deleted/renamed status so the model
  does not report on content that no longer exists
"""

import re
from typing import List, Optional, Tuple

from review_dashboard.logging_config import get_logger
from review_dashboard.models import FileChange, PreparedDiff

logger = get_logger(__name__)


# Regex pattern for hunk headers: @@ -old_start,old_count +new_start,new_count @@
HUNK_HEADER_PATTERN = re.compile(
    r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@"
)


class DiffParser:
    """
    Parser/formatter for unified diffs.

    Usage:
        parser = DiffParser()
        prepared = parser.prepare(changes, max_files=20, max_lines=1000)
    """

    def count_changes(self, patch: str) -> Tuple[int, int]:
        """
        Count added and deleted lines of a unified diff.

        Args:
            patch: Raw unified diff content

        Returns:
            Tuple of (additions, deletions)
        """
        additions = 0
        deletions = 0
        in_hunk = False

        for raw_line in patch.split("\n"):
            if HUNK_HEADER_PATTERN.match(raw_line):
                in_hunk = True
                continue
            if not in_hunk:
                continue
            if raw_line.startswith("+"):
                additions += 1
            elif raw_line.startswith("-"):
                deletions += 1

        return additions, deletions

    def truncate(self, patch: str, max_lines: int) -> Tuple[str, bool]:
        """
        Cut a diff to at most ``max_lines`` lines.

        Returns:
            Tuple of (possibly truncated diff, whether it was truncated)
        """
        lines = patch.rstrip("\n").split("\n")
        if len(lines) <= max_lines:
            return patch.rstrip("\n"), False

        remaining = len(lines) - max_lines
        kept = "\n".join(lines[:max_lines])
        return f"{kept}\n... (diff truncated: {remaining} more lines)", True

    def format_change(self, change: FileChange, diff_text: Optional[str] = None) -> str:
        """Format one file for the review prompt."""
        header = [f"=== File: {change.path} ==="]
        if change.is_new:
            header.append("[NEW FILE]")
        if change.is_deleted:
            header.append("[DELETED FILE]")
        if change.is_renamed and change.renamed_from:
            header.append(f"[RENAMED FROM: {change.renamed_from}]")

        body = diff_text if diff_text is not None else change.unified_diff
        return "\n".join(header) + "\n\n" + (body or "No diff available") + "\n"

    def prepare(
        self,
        changes: List[FileChange],
        max_files: int,
        max_lines: int
    ) -> PreparedDiff:
        """
        Build bounded prompt text for a merge request's changes.

        Args:
            changes: Changed files as returned by the repository client
            max_files: Maximum number of files to include
            max_lines: Maximum diff lines per file

        Returns:
            PreparedDiff with the text and what was included
        """
        if not changes:
            return PreparedDiff()

        included = changes[:max(max_files, 0)]
        sections: List[str] = []
        truncated_files: List[str] = []
        lines_reviewed = 0

        for change in included:
            diff_text, truncated = self.truncate(change.unified_diff, max_lines)
            if truncated:
                truncated_files.append(change.path)

            additions, deletions = self.count_changes(diff_text)
            lines_reviewed += additions + deletions
            sections.append(self.format_change(change, diff_text))

        prepared = PreparedDiff(
            text="\n".join(sections),
            files_reviewed=len(included),
            lines_reviewed=lines_reviewed,
            files_skipped=len(changes) - len(included),
            truncated_files=truncated_files,
        )

        if prepared.files_skipped or truncated_files:
            logger.info(
                "Diff bounded for review",
                files_reviewed=prepared.files_reviewed,
                files_skipped=prepared.files_skipped,
                truncated_files=len(truncated_files)
            )

        return prepared


_parser_instance: Optional[DiffParser] = None


def get_diff_parser() -> DiffParser:
    """Get the singleton DiffParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = DiffParser()
    return _parser_instance
