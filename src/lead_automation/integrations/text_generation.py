"""
Text generation integration used for generated messages and natural-language conditions
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from ..exceptions import CollaboratorError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubjectContext:
    """What the generator may know about the subject"""
    subject_id: str
    channel_id: Optional[str] = None
    context_data: Dict[str, Any] = field(default_factory=dict, compare=False)


class TextGenerator(ABC):
    """Completes a prompt on behalf of a subject"""

    @abstractmethod
    async def complete(self, prompt: str, subject: SubjectContext) -> str:
        """Return completion text; raise CollaboratorError on failure"""
        pass


class ScriptedTextGenerator(TextGenerator):
    """
    Deterministic generator for tests and local runs.

    ``responses`` is either a fixed string, a list consumed in order, or a
    callable ``(prompt, subject) -> str``.
    """

    def __init__(
        self,
        responses: Union[str, List[str], Callable[[str, SubjectContext], str], None] = None
    ):
        self.responses = responses
        self.prompts: List[str] = []
        self.fail_with: Optional[str] = None

    async def complete(self, prompt: str, subject: SubjectContext) -> str:
        self.prompts.append(prompt)
        if self.fail_with:
            raise CollaboratorError("text_generation", self.fail_with)

        if callable(self.responses):
            return self.responses(prompt, subject)
        if isinstance(self.responses, list):
            if not self.responses:
                raise CollaboratorError("text_generation", "no scripted responses left")
            return self.responses.pop(0)
        if self.responses is None:
            raise CollaboratorError("text_generation", "no scripted response configured")
        return self.responses


class OpenAITextGenerator(TextGenerator):
    """OpenAI chat completion backed generator"""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        timeout: float = 30.0,
        max_retries: int = 2,
        client: Optional[Any] = None
    ):
        self.model = model
        self.temperature = temperature
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(
                api_key=api_key, base_url=base_url, timeout=timeout, max_retries=max_retries
            )
        self.client = client

    async def complete(self, prompt: str, subject: SubjectContext) -> str:
        from openai import OpenAIError

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}]
            )
        except OpenAIError as e:
            raise CollaboratorError("openai", str(e))

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise CollaboratorError("openai", "empty completion")
        return content.strip()
