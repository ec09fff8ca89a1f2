"""Prompt templates for the completion models."""

from pathlib import Path

PROMPTS_DIR = Path(__file__).parent


def load_prompt(name: str) -> str:
    """Load a prompt template by file stem."""
    with open(PROMPTS_DIR / f"{name}.md", "r", encoding="utf-8") as f:
        return f.read()


def render_prompt(name: str, **values: str) -> str:
    """Load a template and substitute {{key}} placeholders."""
    text = load_prompt(name)
    for key, value in values.items():
        text = text.replace("{{" + key + "}}", value)
    return text
