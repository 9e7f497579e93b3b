from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from ..domain.chat_models import ConversationTurn
from ..domain.conversation import HISTORY_HEAD, HISTORY_MAX, HISTORY_TAIL, trim_history


INSTRUCTION_PRELUDE = "\n".join(
    [
        "You are an expert Roblox game developer specializing in Luau scripting.",
        "",
        "CRITICAL RULES:",
        "- Always write code in Luau, never plain Lua.",
        "- Always specify which Roblox service each script belongs in.",
        "- Valid services: ServerScriptService, StarterPlayerScripts, ReplicatedStorage, StarterGui.",
        "- Keep the explanation outside the JSON blocks to one or two sentences.",
        "",
        "Every script you create MUST be delivered as its own JSON block formatted exactly like this:",
        "",
        "```json",
        "{",
        '  "type": "script",',
        '  "scriptType": "Script" | "LocalScript" | "ModuleScript",',
        '  "targetService": "ServerScriptService" | "StarterPlayerScripts" | "ReplicatedStorage" | "StarterGui",',
        '  "name": "DescriptiveScriptName",',
        '  "code": "-- full Luau code here"',
        "}",
        "```",
        "",
        "Every physical object you create MUST be delivered as its own JSON block formatted like this:",
        "",
        "```json",
        "{",
        '  "type": "part",',
        '  "className": "Part" | "MeshPart" | "WedgePart" | "CornerWedgePart" | "TrussPart" | "SpawnLocation" | "Seat" | "Model",',
        '  "name": "DescriptivePartName",',
        '  "properties": {"Size": [4, 1, 4], "Position": [0, 5, 0], "Anchored": true}',
        "}",
        "```",
        "",
        "Place JSON blocks after the explanation text, one block per script or object, in the order they should be created.",
        "The code field must contain the complete, ready-to-use Luau script.",
    ]
)


def context_preamble(context: Optional[Sequence[str]]) -> str:
    items = [c.strip() for c in (context or []) if isinstance(c, str) and c.strip()]
    if not items:
        return ""
    lines = [
        "CURRENT GAME STATE:",
        "The user's place already contains the following. Build on it, reuse these names,",
        "and do not recreate anything that already exists unless asked to replace it.",
    ]
    lines.extend(f"- {item}" for item in items)
    return "\n".join(lines)


def build_system_prompt(context: Optional[Sequence[str]] = None) -> str:
    """Instruction prelude, with the workspace preamble ahead of it when present."""
    preamble = context_preamble(context)
    if preamble:
        return preamble + "\n\n" + INSTRUCTION_PRELUDE
    return INSTRUCTION_PRELUDE


def build_messages(
    message: str,
    history: Sequence[ConversationTurn],
    head: int = HISTORY_HEAD,
    tail: int = HISTORY_TAIL,
    limit: int = HISTORY_MAX,
) -> List[Dict[str, str]]:
    msgs: List[Dict[str, str]] = []
    for turn in trim_history(history, head=head, tail=tail, limit=limit):
        msgs.append({"role": turn.role, "content": turn.content})
    msgs.append({"role": "user", "content": message})
    return msgs
