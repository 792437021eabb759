"""Prompt and schema builders shared by the AI backends."""

from __future__ import annotations

from typing import Any, Mapping

from .base import AnalysisRequest

TEST_PROMPT = 'Say "OK" if you can read this.'

_LANGUAGE_NAMES = {
    "da": "Danish",
    "de": "German",
    "en": "English",
    "es": "Spanish",
    "fi": "Finnish",
    "fr": "French",
    "it": "Italian",
    "ja": "Japanese",
    "nb": "Norwegian Bokmål",
    "nl": "Dutch",
    "nn": "Norwegian Nynorsk",
    "pl": "Polish",
    "pt": "Portuguese",
    "sv": "Swedish",
    "zh": "Chinese",
}


def language_name(code: str) -> str:
    """Return a readable language name for a locale such as `nb_NO` or `en`."""
    short = code.strip().lower()[:2]
    return _LANGUAGE_NAMES.get(short, code or "English")


def build_system_prompt(language: str = "en", max_depth: int = 3) -> str:
    """Return the classification policy sent as the system instruction.

    Args:
        language: Locale or language code that folder names must use.
        max_depth: Deepest folder level the model may propose.

    Returns:
        str: System prompt text.
    """
    name = language_name(language)
    return f"""You are a media organization assistant with vision capabilities. Your PRIMARY task is to ANALYZE THE IMAGE CONTENT to determine the most appropriate folder.

## LANGUAGE REQUIREMENT
You MUST respond with folder names in {name}. All folder path values in your response must use {name} words.

## Analysis Priority (highest to lowest):
1. **IMAGE CONTENT**: What objects, scenes, people, activities, or subjects are visible?
2. **EXIF/Metadata**: Camera info, date taken, GPS location, keywords
3. **Text metadata**: Title, alt text, caption, description
4. **Filename**: Only as a last resort hint

## Folder Creation Guidelines

### When to REUSE an existing/suggested folder:
- If a folder already exists that matches the image content, use it
- Check the "Folders Already Suggested in This Session" list and reuse if applicable

### When to CREATE a new folder:
- If no existing folder fits the image content well
- Create descriptive folders based on what you SEE in the image
- Be specific enough to be useful, but general enough to group similar images

### Folder Naming Rules:
- Use Title Case in {name}
- Keep names concise: 1-3 words per level
- Spaces are allowed (e.g., "Street Art", "Birthday Party")
- Create hierarchies when it makes sense (e.g., "Animals/Birds", "Food/Desserts")
- Maximum {max_depth} levels deep

### Avoid These Mistakes:
- Don't create synonymous folders (if "Animals" exists, don't create "Wildlife")
- Don't invert existing hierarchies (if "Events/Outdoor" exists, don't create "Outdoor/Events")
- Don't be overly specific (prefer "Food/Desserts" over "Food/Chocolate_Cake_With_Sprinkles")

## Rules:
- ALWAYS analyze what you SEE in the image first
- Base your folder decision primarily on visual content
- Use metadata only to supplement your visual analysis
- When uncertain, choose a broader category

Respond with valid JSON only. No markdown formatting, no code blocks:
{{
    "action": "existing" (use existing folder), "new" (create new folder), or "skip" (cannot categorize),
    "folder_id": integer ID of existing folder to use, or null if action is "new" or "skip",
    "new_folder_path": "path/to/new/folder (in {name})" if action is "new", otherwise null,
    "confidence": 0.0 to 1.0,
    "reason": "One brief sentence explaining the folder choice (max 20 words)"
}}"""


def format_metadata(metadata: Mapping[str, Any]) -> str:
    """Render item metadata as prompt lines, skipping empty values."""
    lines: list[str] = []
    labels = (
        ("filename", "Filename"),
        ("mime_type", "Type"),
        ("title", "Title"),
        ("alt", "Alt text"),
        ("caption", "Caption"),
        ("description", "Description"),
        ("dimensions", "Dimensions"),
    )
    for key, label in labels:
        value = metadata.get(key)
        if value:
            lines.append(f"{label}: {value}")

    exif = metadata.get("exif")
    if isinstance(exif, Mapping):
        entries = [f"{key}: {value}" for key, value in exif.items() if isinstance(value, str) and value]
        if entries:
            lines.append("EXIF: " + ", ".join(entries))
    return "\n".join(lines)


def build_user_prompt(request: AnalysisRequest) -> str:
    """Return the per-item user instruction.

    Args:
        request: Analysis request describing the item and folder snapshot.

    Returns:
        str: User prompt text.
    """
    if request.folder_paths:
        folders = "\n".join(
            f"- {path} (ID: {folder_id})" for path, folder_id in request.folder_paths.items()
        )
    else:
        folders = "No existing folders."

    if request.allow_new_folders:
        constraint = f"You MAY suggest creating a new folder (max depth: {request.max_depth})."
    else:
        constraint = "You must ONLY use existing folders. Do not suggest new folders."

    suggested = ""
    if request.session_suggested_folders:
        listing = "\n".join(f"- {path}" for path in request.session_suggested_folders)
        suggested = (
            "\n## Folders Already Suggested in This Session (MUST REUSE if applicable)\n"
            "The following folders have already been suggested during this scan. You MUST use one "
            "of these if the media fits the same category. Do NOT create a similar or synonymous "
            f"folder.\n{listing}\n"
        )

    return (
        "Analyze this media file and suggest a folder.\n\n"
        "## IMPORTANT: If an image is provided, FIRST describe what you SEE in it.\n\n"
        "## Media Metadata (use as supplementary context)\n"
        f"{format_metadata(request.metadata)}\n\n"
        "## Available Folders\n"
        f"{folders}\n"
        f"{suggested}\n"
        "## Constraints\n"
        f"{constraint}\n\n"
        'Respond with JSON only. Include "visual_description" if you analyzed an image.'
    )


def decision_json_schema() -> dict[str, Any]:
    """Return the structured-output schema for classification responses."""
    return {
        "type": "object",
        "properties": {
            "visual_description": {"type": "string"},
            "action": {"type": "string", "enum": ["existing", "new", "skip"]},
            "folder_id": {"type": ["integer", "null"]},
            "new_folder_path": {"type": ["string", "null"]},
            "confidence": {"type": "number"},
            "reason": {"type": "string"},
        },
        "required": [
            "visual_description",
            "action",
            "folder_id",
            "new_folder_path",
            "confidence",
            "reason",
        ],
        "additionalProperties": False,
    }


__all__ = [
    "TEST_PROMPT",
    "build_system_prompt",
    "build_user_prompt",
    "decision_json_schema",
    "format_metadata",
    "language_name",
]
