"""Prompt builder for watercolor style transfer."""

from typing import Optional

from .types import PromptPair


class PromptBuilder:
    """Builds SDXL prompts from a room description and style."""

    BASE_PROMPT = (
        "professional watercolor illustration of {room_type} interior, "
        "architectural rendering in watercolor medium, soft washes, "
        "visible brushstrokes, paper texture, color bleeding at edges, "
        "wet on wet technique, artistic interpretation"
    )

    STYLE_MODIFIERS = {
        "classic": "traditional watercolor painting, gallery quality, "
                   "by renowned architectural illustrator",
        "loose": "loose sketch style, expressive brushwork, "
                 "spontaneous color flow, artistic freedom",
        "architectural": "precise architectural watercolor, "
                         "clean lines with soft washes, professional presentation",
        "minimal": "minimalist watercolor, subtle washes, "
                   "restrained palette, elegant simplicity",
    }

    DEFAULT_COLOR = "muted sophisticated colors"

    NEGATIVE_PROMPT = (
        "photo, photorealistic, 3d render, digital art, anime, cartoon, "
        "oversaturated, sharp edges, hard lines, computer generated, cgi, "
        "artificial, plastic, glossy"
    )

    def build(
        self,
        room_type: str,
        style: str,
        atmosphere: Optional[str] = None,
        color_tone: Optional[str] = None,
    ) -> PromptPair:
        """
        Build the prompt pair for a render.

        Args:
            room_type: Type of room (e.g., "living room", "kitchen")
            style: One of classic, loose, architectural, minimal
            atmosphere: Optional mood hint (e.g., "morning light")
            color_tone: Optional palette hint (e.g., "warm earth")

        Returns:
            PromptPair of positive and negative prompt

        Raises:
            ValueError: If the style is not recognized
        """
        if style not in self.STYLE_MODIFIERS:
            raise ValueError(
                f"Style must be one of: {', '.join(self.STYLE_MODIFIERS)}"
            )

        parts = [
            self.BASE_PROMPT.format(room_type=room_type.strip()),
            self.STYLE_MODIFIERS[style],
        ]

        if atmosphere:
            parts.append(atmosphere.strip())

        if color_tone:
            parts.append(f"{color_tone.strip()} color palette")
        else:
            parts.append(self.DEFAULT_COLOR)

        parts.append("((watercolor painting))")

        return PromptPair(", ".join(parts), self.NEGATIVE_PROMPT)
