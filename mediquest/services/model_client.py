"""
Model invocation boundary.

Flows depend only on two capabilities:
- generate structured output: prompt (plus images and tools) in, validated
  pydantic object out
- generate image: prompt plus reference image in, image out

OpenAIModelClient implements both against any OpenAI-compatible endpoint.
Each call is a single attempt; failures surface as typed errors.
"""

import json
import re
import time
from collections.abc import Sequence
from typing import Any, Protocol, TypeVar

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mediquest.config.config import Settings, get_settings
from mediquest.config.logging_config import get_logger
from mediquest.errors import AnalysisUnavailable, ImageGenerationUnavailable
from mediquest.models.data_uri import SUPPORTED_IMAGE_TYPES, DataUri
from mediquest.services.tools import ToolRegistry

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

SCHEMA_INSTRUCTIONS = """
## Output format
Respond with a single JSON object and nothing else (no markdown, no prose).
It MUST validate against this JSON schema:
{schema}"""


class ModelClient(Protocol):
    """Capabilities the flows need from a generative model provider."""

    async def generate_structured(
        self,
        *,
        system_prompt: str,
        prompt: str,
        output_model: type[ModelT],
        images: Sequence[DataUri] = (),
        tools: ToolRegistry | None = None,
    ) -> ModelT:
        ...

    async def generate_image(self, *, prompt: str, reference_image: DataUri) -> DataUri:
        ...

    async def aclose(self) -> None:
        ...


class OpenAIModelClient:
    """
    ModelClient backed by the OpenAI SDK.

    Structured calls use JSON mode with the output schema embedded in the
    system prompt, and validate the reply immediately. Tool calls requested
    by the model are served from the registry passed with the call.
    """

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        """
        Initialize the model client.

        Args:
            settings: Application settings. Uses default if not provided.
            client: Pre-built SDK client, mainly for tests.
        """
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create the SDK client."""
        if self._client is None:
            if not self.settings.llm_api_key:
                logger.warning("LLM API key not configured; model calls will fail")
            client_kwargs: dict[str, Any] = {
                "api_key": self.settings.llm_api_key or "unset",
                "base_url": self.settings.llm_base_url,
                "max_retries": self.settings.llm_max_retries,
            }
            if self.settings.llm_timeout_seconds is not None:
                client_kwargs["timeout"] = self.settings.llm_timeout_seconds
            self._client = AsyncOpenAI(**client_kwargs)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def generate_structured(
        self,
        *,
        system_prompt: str,
        prompt: str,
        output_model: type[ModelT],
        images: Sequence[DataUri] = (),
        tools: ToolRegistry | None = None,
    ) -> ModelT:
        """
        Request a response constrained to output_model.

        Raises:
            AnalysisUnavailable: Remote error, empty reply, unparseable JSON,
                schema mismatch, unknown tool, or tool budget exhausted.
            NotFound: A tool handler could not find a referenced document.
        """
        start_time = time.perf_counter()
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self._system_content(system_prompt, output_model)},
            {"role": "user", "content": self._user_content(prompt, images)},
        ]
        request_kwargs: dict[str, Any] = {
            "model": self.settings.llm_model,
            "max_tokens": self.settings.llm_max_tokens,
            "temperature": self.settings.llm_temperature,
            "response_format": {"type": "json_object"},
        }
        if tools:
            request_kwargs["tools"] = tools.definitions()

        tool_rounds = 0
        while True:
            try:
                response = await self.client.chat.completions.create(
                    messages=messages,
                    **request_kwargs,
                )
            except OpenAIError as e:
                logger.error(
                    "Model call failed",
                    output_model=output_model.__name__,
                    error=str(e),
                )
                raise AnalysisUnavailable(f"Model call failed: {e}") from e

            if not response.choices:
                raise AnalysisUnavailable("Model returned no choices")
            message = response.choices[0].message

            if not message.tool_calls:
                break

            if tools is None:
                raise AnalysisUnavailable("Model requested a tool but none were registered")
            if tool_rounds >= self.settings.llm_max_tool_rounds:
                logger.error(
                    "Tool call budget exhausted",
                    output_model=output_model.__name__,
                    max_rounds=self.settings.llm_max_tool_rounds,
                )
                raise AnalysisUnavailable("Model did not produce an answer within the tool call budget")
            tool_rounds += 1

            messages.append({
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.function.name,
                            "arguments": call.function.arguments,
                        },
                    }
                    for call in message.tool_calls
                ],
            })
            for call in message.tool_calls:
                result = await tools.invoke(call.function.name, call.function.arguments)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": result,
                })

        output = self._parse_output(message.content, output_model)
        logger.info(
            "Structured output received",
            output_model=output_model.__name__,
            tool_rounds=tool_rounds,
            elapsed_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return output

    async def generate_image(self, *, prompt: str, reference_image: DataUri) -> DataUri:
        """
        Edit the reference image according to the prompt.

        Raises:
            ImageGenerationUnavailable: Remote error or no image returned.
        """
        start_time = time.perf_counter()
        try:
            response = await self.client.images.edit(
                model=self.settings.llm_image_model,
                image=(
                    f"scan.{reference_image.extension}",
                    reference_image.decode(),
                    reference_image.mime_type,
                ),
                prompt=prompt,
            )
        except OpenAIError as e:
            logger.error("Image model call failed", error=str(e))
            raise ImageGenerationUnavailable(f"Image model call failed: {e}") from e

        image = response.data[0] if response.data else None
        if image is not None and image.b64_json:
            result = DataUri(mime_type="image/png", payload=image.b64_json)
        elif image is not None and image.url:
            result = await self._download_image(image.url)
        else:
            raise ImageGenerationUnavailable("Image model returned no image")

        logger.info(
            "Image generated",
            mime_type=result.mime_type,
            elapsed_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return result

    async def _download_image(self, url: str) -> DataUri:
        """Fetch an image the provider returned by URL instead of inline."""
        try:
            async with httpx.AsyncClient(timeout=30.0) as http:
                response = await http.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageGenerationUnavailable(f"Could not fetch generated image: {e}") from e
        if not response.content:
            raise ImageGenerationUnavailable("Generated image was empty")
        mime_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        return DataUri.from_bytes(response.content, mime_type)

    def _system_content(self, system_prompt: str, output_model: type[BaseModel]) -> str:
        schema = json.dumps(output_model.model_json_schema(), indent=2)
        return system_prompt.strip() + "\n" + SCHEMA_INSTRUCTIONS.format(schema=schema)

    def _user_content(self, prompt: str, images: Sequence[DataUri]) -> str | list[dict[str, Any]]:
        if not images:
            return prompt
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for index, attachment in enumerate(images, start=1):
            if attachment.mime_type in SUPPORTED_IMAGE_TYPES:
                content.append({"type": "image_url", "image_url": {"url": attachment.to_uri()}})
            else:
                # image_url parts only accept images; documents go as file parts
                content.append({
                    "type": "file",
                    "file": {
                        "filename": f"attachment-{index}.{attachment.extension}",
                        "file_data": attachment.to_uri(),
                    },
                })
        return content

    def _parse_output(self, content: str | None, output_model: type[ModelT]) -> ModelT:
        """Parse and validate the model's final JSON answer."""
        if not content or not content.strip():
            raise AnalysisUnavailable("Model returned an empty response")

        # Remove markdown code blocks if present
        cleaned = re.sub(r"```(?:json)?\s*", "", content).strip()
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning("JSON parse failed", content_preview=cleaned[:100])
            raise AnalysisUnavailable("Model returned invalid JSON") from e

        try:
            return output_model.model_validate(data)
        except PydanticValidationError as e:
            logger.warning(
                "Model output failed schema validation",
                output_model=output_model.__name__,
                error_count=e.error_count(),
            )
            raise AnalysisUnavailable(
                f"Model output does not match {output_model.__name__}",
                details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            ) from e
