"""Pull an executable script out of free-form model output."""

from __future__ import annotations

import re

from symbolgen.ai.errors import ExtractionError

OUTPUT_FOOTER = '(command "SAVEAS" "2018" "Symbol.dwg")'

# Most specific fences first; the bare fence is the last resort.
FENCE_PATTERNS: tuple[re.Pattern[str], ...] = (
  re.compile(r"```lisp[ \t]*\r?\n(.*?)```", re.DOTALL | re.IGNORECASE),
  re.compile(r"```autolisp[ \t]*\r?\n(.*?)```", re.DOTALL | re.IGNORECASE),
  re.compile(r"```scr[ \t]*\r?\n(.*?)```", re.DOTALL | re.IGNORECASE),
  re.compile(r"```[ \t]*\r?\n(.*?)```", re.DOTALL),
)

# Unfenced output is only accepted when it opens like a script.
DIRECTIVE_PREFIXES: tuple[str, ...] = ("(setvar", ";", "(command", "(defun")


def extract_script(raw_output: str) -> str:
  """Return the script embedded in ``raw_output``.

  Raises ``ExtractionError`` when no fenced block matches and the text does
  not start with a known directive token.
  """
  text = (raw_output or "").strip()
  for pattern in FENCE_PATTERNS:
    match = pattern.search(text)
    if match and match.group(1).strip():
      return match.group(1).strip()

  if text.lower().startswith(DIRECTIVE_PREFIXES):
    return text

  preview = text[:80].replace("\n", " ")
  raise ExtractionError(f"Could not extract script from model response (starts with: {preview!r})" if preview else "Model response contained no script")


def ensure_output_footer(script: str, footer: str = OUTPUT_FOOTER) -> str:
  """Append the save command unless the script already issues it."""
  if footer.lower() in script.lower():
    return script
  return f"{script.rstrip()}\n{footer}\n"
