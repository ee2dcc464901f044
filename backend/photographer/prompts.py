from __future__ import annotations

from typing import Dict, List, Literal, get_args

ImageStyle = Literal["Bright/Modern", "Rustic/Dark", "Social Media"]

IMAGE_STYLES: List[str] = list(get_args(ImageStyle))
DEFAULT_STYLE: ImageStyle = "Bright/Modern"

STYLE_DESCRIPTIONS: Dict[str, str] = {
    "Bright/Modern": "Clean, airy, and minimalist.",
    "Rustic/Dark": "Moody, textured, and dramatic.",
    "Social Media": "Vibrant, top-down, and eye-catching.",
}

_BASE_PROMPT = (
    'Professional, ultra-realistic, high-end food photography of "{dish_name}". '
    "Studio quality, DSLR, sharp focus, mouth-watering details."
)

# Unknown styles use the bare base prompt (see style_prompt).
_STYLE_TEMPLATES: Dict[str, str] = {
    "Rustic/Dark": (
        _BASE_PROMPT
        + " Dark, moody lighting with rustic elements like a wooden table, dark linen, "
        "and vintage cutlery. Dramatic shadows, rich textures."
    ),
    "Bright/Modern": (
        _BASE_PROMPT
        + " Clean, modern, minimalist setting with bright, airy, natural light. "
        "White or light-colored background, simple plating, contemporary tableware. "
        "High key lighting, vibrant colors."
    ),
    "Social Media": (
        'Eye-catching, top-down flat lay food photography of "{dish_name}", '
        "perfect for social media. Vibrant colors, interesting composition with "
        "complementary props like fresh ingredients or utensils. Bright, even lighting. "
        "Styled for Instagram."
    ),
}


def style_prompt(style: str, dish_name: str) -> str:
    template = _STYLE_TEMPLATES.get(style)
    if template is None:
        template = _BASE_PROMPT
    return template.format(dish_name=dish_name)


def menu_parse_prompt(menu_text: str) -> str:
    return (
        "Parse the following restaurant menu text and extract only the dish names. "
        "Ignore prices, descriptions, and categories. Here is the menu:\n\n"
        f"{menu_text}"
    )
