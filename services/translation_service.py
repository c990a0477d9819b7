import logging
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

from utils.exceptions import TranslationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You rewrite chat messages between MBTI personality types. "
    "Rewrite the message written by a {source} so it reads naturally to a {target}: "
    "match the target's vocabulary, energy and preferred communication style while keeping "
    "the original meaning. Keep it light and a little funny. "
    "Return ONLY the rewritten text, with no quotes or explanations."
)


class TextTransformer:
    """OpenAI-compatible chat-completions client used for personality-style rewrites."""

    def __init__(self, api_key: Optional[str], model: str, base_url: Optional[str] = None,
                 client: Optional[AsyncOpenAI] = None, temperature: float = 0.8):
        self.model = model
        self.temperature = temperature
        self._client = client
        self._api_key = api_key
        self._base_url = base_url

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise TranslationError("Translation is not configured (TRANSLATION_API_KEY missing)")
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    async def transform(self, text: str, source_tag: str, target_tag: str,
                        context: Optional[List[str]] = None) -> str:
        """Rewrite text from source_tag's style to target_tag's. Raises TranslationError."""
        messages = [{"role": "system", "content": SYSTEM_PROMPT.format(source=source_tag, target=target_tag)}]
        if context:
            history = "\n".join(context)
            messages.append({"role": "user", "content": f"Earlier messages in the conversation:\n{history}"})
        messages.append({"role": "user", "content": text})

        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
            )
        except OpenAIError as e:
            logger.warning("Translation %s -> %s failed: %s", source_tag, target_tag, e)
            raise TranslationError(f"Translation failed: {e}") from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise TranslationError("Translation service returned no text")
        return content.strip()
