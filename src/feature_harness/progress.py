"""Progress journal - the human-readable history handed to each new session.

A plain text file (progress.log) that gives every session immediate context
about what earlier sessions did. Entries are separated by a blank line and
the file is only ever appended to.
"""

from datetime import datetime
from pathlib import Path

from .models import JournalEntry


class ProgressJournal:
    """Manages the append-only progress journal.

    Entries are plain text: the next agent session reads them as context and
    nothing parses them back. Existing text is never rewritten.
    """

    ENTRY_SEPARATOR = "\n\n"

    def __init__(self, project_path: Path, filename: str = "progress.log"):
        self.project_path = Path(project_path)
        self.progress_file = self.project_path / filename

    def initialize(self, project_name: str) -> None:
        """Write the journal header for a new project."""
        if self.progress_file.exists():
            return  # Don't overwrite existing progress

        header = (
            f"# Progress Log for {project_name}\n"
            f"# Created: {datetime.now().isoformat(timespec='seconds')}\n"
        )
        self.progress_file.write_text(header, encoding="utf-8")

    def read_all(self) -> str:
        """Read the full journal.

        Undecodable bytes are replaced rather than raised, since the journal
        is only ever context for the next session.
        """
        if not self.progress_file.exists():
            return ""
        return self.progress_file.read_text(encoding="utf-8", errors="replace")

    def read_recent(self, entries: int = 10) -> str:
        """Read the last N blank-line separated entries."""
        content = self.read_all().strip()
        if not content or entries <= 0:
            return ""

        blocks = content.split(self.ENTRY_SEPARATOR)
        return self.ENTRY_SEPARATOR.join(blocks[-entries:])

    def append(self, entry: JournalEntry) -> None:
        """Append an entry to the journal."""
        text = entry.render()
        prefix = ""
        if self.progress_file.exists() and self.progress_file.stat().st_size > 0:
            existing_tail = self.read_all()[-1:]
            prefix = "\n" if existing_tail == "\n" else self.ENTRY_SEPARATOR

        with open(self.progress_file, "a", encoding="utf-8") as f:
            f.write(prefix + text + "\n")
