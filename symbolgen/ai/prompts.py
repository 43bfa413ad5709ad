"""Prompt templates for script generation."""

from __future__ import annotations

from collections.abc import Mapping

from symbolgen.ai.providers.base import ChatMessage

SCRIPT_SYSTEM_PROMPT = """# Symbol Specification to AutoLISP Converter

You are an AutoCAD automation assistant. Convert a structured symbol specification into an
AutoLISP .scr script that draws the described plan-view symbol in an empty drawing.

## Output requirements
1. Create every layer from the specification with its color and linetype.
2. Draw geometry with entmake on the correct layer. All dimensions are millimetres.
3. Centre the symbol on the origin (0,0). Always include the Z coordinate (0.0) in points.
4. End with the export commands, in this order:
   (command "ZOOM" "E")
   (command "PNGOUT" "Symbol.png" "ALL" "")
   (command "SAVEAS" "2018" "Symbol.dwg")
5. Never call QUIT; the execution service terminates the session.

## Script skeleton
```lisp
(setvar "cmdecho" 0)
(setvar "filedia" 0)
(command "-DWGUNITS" 3 2 2 "Y" "Y" "N")
; layers, geometry, centre mark, export
```

## entmake reference
- CIRCLE: (entmake '((0 . "CIRCLE") (8 . "LAYER") (10 CX CY 0.0) (40 . RADIUS)))
  The specification gives DIAMETER: divide by 2 for the radius.
- LINE: (entmake '((0 . "LINE") (8 . "LAYER") (10 X1 Y1 0.0) (11 X2 Y2 0.0)))
- ARC: (entmake '((0 . "ARC") (8 . "LAYER") (10 CX CY 0.0) (40 . R) (50 . START) (51 . END))) with angles in radians.
- Rectangle: closed LWPOLYLINE with (90 . 4) (70 . 1) and four (10 X Y) vertices.

## Layers
- Make: (command "-LAYER" "Make" "NAME" "Color" "N" "" "")
- DASHED linetype must be loaded before use: (command "-LINETYPE" "Load" "DASHED" "" "")
- Set current: (setvar "CLAYER" "NAME")

Always draw a 3 mm centre cross on LUM-CENTER. Wrap the whole script in a ```lisp code block.
"""

FEEDBACK_CHECKLIST = """Please fix the script and try again. Make sure to:
1. Use only valid AutoCAD command options
2. Check syntax carefully (balanced parentheses, quoted strings)
3. Ensure all coordinates and values are valid numbers
4. Remember: diameter values must be divided by 2 for radius in entmake
5. Wrap the script in a ```lisp code block

Generate a corrected .scr script."""


def _format_hints(context_hints: Mapping[str, object] | None) -> str:
  if not context_hints:
    return ""
  lines = [f"- **{key}**: {value}" for key, value in context_hints.items() if value not in (None, "", [], {})]
  if not lines:
    return ""
  return "\n## Context\n\n" + "\n".join(lines) + "\n"


def build_script_prompt(specification: str, context_hints: Mapping[str, object] | None = None) -> str:
  """Build the user prompt carrying the symbol specification."""
  return f"""Convert this Symbol Specification to an AutoLISP script.

**Output Files**: Symbol.dwg, Symbol.png
{_format_hints(context_hints)}
## Symbol Specification

{specification.strip()}

Generate the complete .scr script following the format from your instructions. Wrap the script in a ```lisp code block."""


def build_initial_messages(specification: str, context_hints: Mapping[str, object] | None = None) -> list[ChatMessage]:
  return [
    {"role": "system", "content": SCRIPT_SYSTEM_PROMPT},
    {"role": "user", "content": build_script_prompt(specification, context_hints)},
  ]


def build_feedback_messages(specification: str, previous_script: str, previous_error: str, context_hints: Mapping[str, object] | None = None) -> list[ChatMessage]:
  """Replay the failing script as the assistant turn and ask for a correction."""
  return [
    *build_initial_messages(specification, context_hints),
    {"role": "assistant", "content": f"```lisp\n{previous_script.strip()}\n```"},
    {"role": "user", "content": f"The script failed with this error:\n\n{previous_error.strip()}\n\n{FEEDBACK_CHECKLIST}"},
  ]
