"""Prompt text used by the orchestrator."""

from __future__ import annotations

from collections.abc import Mapping

CONTINUE_PROMPT = (
    "Continue your prior response. IMPORTANT: Immediately begin from where you left off "
    "without any interruptions.\n"
    "Do not repeat any content, including artifact and action tags."
)

WORK_DIR = "/home/project"


def strip_work_dir(path: str) -> str:
    if path.startswith(WORK_DIR):
        return path[len(WORK_DIR):]
    return path


def build_context_prompt(files: Mapping[str, str]) -> str:
    """System prompt carrying the selected project files."""
    blocks = [
        f'<boltAction type="file" filePath="{strip_work_dir(path)}">\n{content}\n</boltAction>'
        for path, content in files.items()
    ]
    return (
        "Below are the files from the project that are most relevant to the request.\n"
        "CONTEXT BUFFER:\n---\n" + "\n".join(blocks) + "\n---"
    )
