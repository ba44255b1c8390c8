"""Prompt text and instruction table for the assistant."""

from __future__ import annotations

from jinja2 import Template

INSTRUCTION_TEMPLATES: dict[str, str] = {
    "summary": (
        "Кратко резюмируй переписку: что хотел собеседник, "
        "что ответил пользователь, что лучше ответить дальше"
    ),
    "formal": "Помоги составить официальный ответ. Вежливый и профессиональный",
    "friendly": "Помоги составить дружеский ответ. Теплый и естественный",
}

SELF_LABEL = "Ты"

TEXT_SYSTEM_PROMPT = "Ты помогаешь в переписках"

MULTIMODAL_SYSTEM_PROMPT = (
    "Ты помогаешь в переписках. "
    "Анализируй весь контекст: текст, изображения и голосовые сообщения."
)

CONTEXT_HEADER = "КОНТЕКСТ ПЕРЕПИСКИ:"

IMAGE_CAPTION = "[отправил изображение]"
VOICE_CAPTION = "[отправил голосовое сообщение]"
IMAGE_FAILED = "[Изображение - не удалось загрузить]"
VOICE_FAILED = "[Голосовое сообщение - не удалось загрузить]"

DESCRIBE_IMAGE_PROMPT = "Опиши изображение кратко на русском (1-2 предложения)"

TRANSCRIPT_LINE = Template("[{{ time }}] {{ speaker }}: {{ text }}", autoescape=False)

TEXT_PROMPT = Template(
    "Ты - ассистент для помощи в переписках.\n"
    "\n"
    "{{ header }}\n"
    "{{ transcript }}\n"
    "\n"
    "ВАЖНО: '{{ self_label }}' - это пользователь. Остальные - собеседники.\n"
    "\n"
    "ЗАДАЧА: {{ instruction }}",
    autoescape=False,
    keep_trailing_newline=True,
)

MULTIMODAL_TRAILER = Template(
    "\n\nВАЖНО: '{{ self_label }}' - это пользователь. Остальные - собеседники.\n"
    "\n"
    "ЗАДАЧА: {{ instruction }}",
    autoescape=False,
)


def render_text_prompt(transcript: str, instruction: str) -> str:
    return TEXT_PROMPT.render(
        header=CONTEXT_HEADER,
        transcript=transcript,
        self_label=SELF_LABEL,
        instruction=instruction,
    )


def render_trailer(instruction: str) -> str:
    return MULTIMODAL_TRAILER.render(self_label=SELF_LABEL, instruction=instruction)
