CONFLICT_ANALYZER_PROMPT = """You are analyzing user prompts in a collaborative design tool to detect conflicts and determine priorities.

{CURRENT_STATE}

RECENT PROMPTS (in chronological order, [1] = first submitted):
{EVENTS}

YOUR TASK:
1. Determine if these prompts are ADDITIVE (can coexist) or CONFLICTING (mutually exclusive/contradictory)
2. For conflicts, decide which prompt should take priority based on:
   - Coherence with existing app state
   - Feasibility
   - How fundamental the change is
   - Timing (when in doubt, the first prompt may have priority, but not always)
3. Think through your reasoning step by step
4. Provide a clear decision

RULES:
- ALWAYS prioritize at least one prompt - never leave all prompts unimplemented
- PREFER additive/collaborative solutions over conflicts when possible
- If prompts seem conflicting, first consider if they can coexist with tension
  (e.g. "make it blue" + "make it red" = gradient or split design)
- Only mark as "mutually-exclusive" if truly impossible to combine
  (e.g. "todo app" vs "weather app" as core purpose)
- When marking conflicts, ALWAYS choose a winner that is one of the conflicting prompts
- An additive group needs at least two prompts
- "prioritizedPrompts" MUST include ALL prompt numbers exactly once, highest priority first

RESPONSE FORMAT: show your thinking first, then end with ONLY this JSON object:
{
  "additive": [
    {"promptIds": [1, 2], "explanation": "These prompts work together because..."}
  ],
  "conflicts": [
    {
      "promptIds": [1, 3],
      "type": "mutually-exclusive" | "contradictory",
      "winner": 1,
      "reasoning": "Choosing prompt 1 because...",
      "confidence": 0.85
    }
  ],
  "prioritizedPrompts": [1, 3, 2]
}

Use prompt numbers (1, 2, 3...) in the JSON, not ids.
"""

ANALYZER_CURRENT_STATE = """CURRENT APP STATE:
{SPEC}

Consider how new prompts fit with or contradict the existing design."""

ANALYZER_FRESH_START = "No current design exists yet - this is a fresh start."


PLANNER_PROMPT = """You are a design planner for a collaborative sandbox. Given multiple user inputs (potentially conflicting), synthesize a unified DesignSpec JSON that BLENDS all ideas.

{CURRENT_STATE}

CONFLICT ANALYSIS RESULTS (already decided, respect them):
{ANALYSIS}

{DIRECTIVE}

PARTICIPANT PROMPTS (priority order, most important first):
{EVENTS}

DesignSpec format:
{
  "palette": {"bg": "#hex", "fg": "#hex", "accent": ["#hex"]},
  "layout": {"kind": "landing|gallery|dashboard", "sections": [{"id": "string", "type": "string", "props": {}}]},
  "components": [{"path": "string", "type": "string", "props": {}}],
  "tensions": [{"participantId": "string", "weight": 0.5, "reason": "string"}],
  "themeVars": {"--css-var": "value"}
}

RULES:
- If a current design exists, MERGE new ideas with the existing components
- The "components" array must include ALL components (existing + new)
- Only remove an existing component when a higher-priority new prompt explicitly contradicts it
- Conflict winners must be fully implemented; losers' conflicting aspects are ignored
- Tension weights (0..1) record whose prompts shaped which parts of the design

Return ONLY valid JSON, no markdown.
"""

PLANNER_CURRENT_STATE = """Current design state:
{SPEC}

Your task: BLEND the new prompts with the existing design. DO NOT discard existing components unless explicitly contradicted. Show tensions between different participants' visions."""

PLANNER_FRESH_START = "There is no current design: start a new one."


BUILDER_PROMPT = """You are a code builder. Convert a DesignSpec into FilePatch JSON for a vanilla HTML/CSS/JS app.

{CURRENT_STATE}

COMPONENTS YOU MUST INCLUDE:
{COMPONENTS}

TENSIONS (use these to determine visual prominence):
{TENSIONS}

FilePatch format:
{
  "ops": [
    {"op": "setFile", "path": "string", "content": "string"},
    {"op": "deleteFile", "path": "string"},
    {"op": "mkdir", "path": "string"}
  ]
}

REQUIREMENTS:
1. Vanilla HTML/CSS/JavaScript only - no frameworks
2. ALWAYS create/update "{PRIMARY_PATH}" as the main entry point
3. Every component listed above MUST appear in the generated HTML (use its type as a class name or id)
4. Preserve existing features unless the spec contradicts them
5. Use the palette colors; higher tension weight = more prominent styling
6. Return ONLY valid JSON, no markdown or code fences

DesignSpec:
{SPEC}

FilePatch:
"""

BUILDER_CURRENT_STATE = """CURRENT {PRIMARY_PATH}:
{CURRENT_ARTIFACT}

Your task: PRESERVE and ENHANCE the existing HTML. Add new features from the spec without removing existing ones unless explicitly contradicted."""


PLATFORM_PROMPT = """This is a collaborative Next.js project for room {ROOM_ID}.
Summary: {SUMMARY}
Top commands:
{COMMANDS}

Please improve the existing Next.js app by implementing these requests. Keep every feature additive, preserve prior functionality, and treat the design as a live sandbox preview that should stay responsive. Generate only Next.js app router friendly code (app directory, TypeScript)."""
