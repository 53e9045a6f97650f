#!/usr/bin/env python3
"""
Ollama Client for the Chat Bridge
---------------------------------
Handles communication with the Ollama API: chat completions with tool
calling on the OpenAI-compatible endpoint, plain completions, embeddings
and server health.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .errors import EmbeddingError, MalformedModelResponse, ModelUnavailable
from .models import ModelResponse, TokenUsage, ToolDescriptor, ToolInvocation, Turn, TurnRole


class ModelProvider(ABC):
    """Anything that can turn a conversation into the next model message."""

    @abstractmethod
    def submit(self,
               system_role: str,
               turns: List[Turn],
               tools: Optional[List[ToolDescriptor]] = None,
               temperature: Optional[float] = None,
               model: Optional[str] = None,
               tool_choice: Optional[str] = None) -> ModelResponse:
        """
        Request the next message for a conversation.

        Raises:
            ModelUnavailable: On network failure, timeout or a non-success status
            MalformedModelResponse: When the body cannot be interpreted
        """

    def complete(self, prompt: str, model: Optional[str] = None,
                 temperature: Optional[float] = None) -> ModelResponse:
        """Stateless one-shot completion."""
        return self.submit("", [Turn.user(prompt)], temperature=temperature, model=model)


class EmbeddingProvider(ABC):

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Return the embedding vector for ``text``.

        Raises:
            EmbeddingError: If the vector could not be obtained
        """


def turns_to_messages(system_role: str, turns: List[Turn]) -> List[Dict[str, Any]]:
    """Render a conversation as chat messages for the OpenAI-compatible endpoint."""
    messages: List[Dict[str, Any]] = []
    if system_role:
        messages.append({"role": "system", "content": system_role})

    for turn in turns:
        if turn.role in (TurnRole.USER, TurnRole.SUMMARY):
            # Summaries are replayed to the model as user context
            messages.append({"role": "user", "content": turn.content})
        elif turn.role == TurnRole.ASSISTANT:
            message: Dict[str, Any] = {"role": "assistant", "content": turn.content}
            if turn.tool_invocations:
                message["tool_calls"] = [
                    {
                        "id": inv.id,
                        "type": "function",
                        "function": {"name": inv.name, "arguments": inv.arguments_json},
                    }
                    for inv in turn.tool_invocations
                ]
            messages.append(message)
        elif turn.role == TurnRole.TOOL_RESULT:
            message = {"role": "tool", "tool_call_id": turn.invocation_id, "content": turn.content}
            if turn.tool_name:
                message["name"] = turn.tool_name
            messages.append(message)
    return messages


class OllamaClient(ModelProvider, EmbeddingProvider):
    """Client for interacting with Ollama API."""

    def __init__(self, config):
        """
        Initialize the Ollama client.

        Args:
            config: OllamaConfig object or similar with attributes:
                - base_url: Base URL for Ollama API
                - model: Default chat model
                - embedding_model: Model used for embeddings
                - temperature: Temperature for generation
                - max_tokens: Maximum tokens to generate
                - timeout: Request timeout in seconds
        """
        self.base_url = getattr(config, 'base_url', 'http://localhost:11434').rstrip('/')
        self.default_model = getattr(config, 'model', 'qwen2.5:3b')
        self.embedding_model = getattr(config, 'embedding_model', 'nomic-embed-text')
        self.temperature = getattr(config, 'temperature', 0.7)
        self.max_tokens = getattr(config, 'max_tokens', 2048)
        self.timeout = getattr(config, 'timeout', 120)
        self.logger = logging.getLogger("chatbridge.ollama")

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Error calling Ollama API at {path}: {str(e)}")
            raise ModelUnavailable(f"Ollama request to {path} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            self.logger.error(f"Error parsing Ollama API response from {path}: {str(e)}")
            raise MalformedModelResponse(f"Ollama returned a non-JSON body from {path}") from e
        if not isinstance(data, dict):
            raise MalformedModelResponse(f"Ollama returned an unexpected body from {path}")
        return data

    def submit(self,
               system_role: str,
               turns: List[Turn],
               tools: Optional[List[ToolDescriptor]] = None,
               temperature: Optional[float] = None,
               model: Optional[str] = None,
               tool_choice: Optional[str] = None) -> ModelResponse:
        """
        Send a chat completion request.

        Args:
            system_role: System prompt for the conversation
            turns: Conversation history, oldest first
            tools: Tool descriptors the model may call
            temperature: Optional temperature override
            model: Optional model override
            tool_choice: Name of a tool the model must call

        Returns:
            Normalised ModelResponse
        """
        payload: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": turns_to_messages(system_role, turns),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens,
            "stream": False,
        }
        if tools:
            payload["tools"] = [tool.to_function_spec() for tool in tools]
        if tool_choice:
            payload["tool_choice"] = {"type": "function", "function": {"name": tool_choice}}

        self.logger.info(f"Requesting chat completion from {payload['model']} "
                         f"({len(payload['messages'])} messages, {len(tools or [])} tools)")
        data = self._post("/v1/chat/completions", payload)
        return self._parse_chat_response(data)

    def _parse_chat_response(self, data: Dict[str, Any]) -> ModelResponse:
        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise MalformedModelResponse("Chat completion contained no choices")

        choice = choices[0]
        message = choice.get("message") or {}
        if not isinstance(message, dict):
            raise MalformedModelResponse("Chat completion message is not an object")

        raw_calls = message.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise MalformedModelResponse("Chat completion tool_calls is not a list")

        tool_calls = []
        for raw_call in raw_calls:
            if not isinstance(raw_call, dict):
                raise MalformedModelResponse(f"Tool call is not an object: {raw_call!r}")
            function = raw_call.get("function") or {}
            if not isinstance(function, dict):
                raise MalformedModelResponse("Tool call function is not an object")
            name = function.get("name")
            if not name or not isinstance(name, str):
                raise MalformedModelResponse("Tool call without a function name")
            arguments = function.get("arguments", "{}")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            tool_calls.append(ToolInvocation(
                id=str(raw_call.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
                name=name,
                arguments_json=arguments,
            ))

        text = message.get("content")
        if text is not None and not isinstance(text, str):
            raise MalformedModelResponse("Chat completion content is not text")
        if text is None and not tool_calls:
            raise MalformedModelResponse("Chat completion had neither content nor tool calls")

        result = ModelResponse(
            text=text,
            tool_calls=tool_calls,
            usage=self._parse_usage(data),
            stop_reason=choice.get("finish_reason") or ("tool_calls" if tool_calls else "stop"),
        )
        self.logger.info(f"Ollama response received: stop_reason={result.stop_reason}, "
                         f"tool_calls={len(tool_calls)}, usage={result.usage.to_dict()}")
        return result

    @staticmethod
    def _parse_usage(data: Dict[str, Any]) -> TokenUsage:
        usage = data.get("usage") or {}
        if not isinstance(usage, dict):
            raise MalformedModelResponse("Usage block is not an object")
        try:
            return TokenUsage(
                input_tokens=int(usage.get("prompt_tokens", 0) or 0),
                output_tokens=int(usage.get("completion_tokens", 0) or 0),
            )
        except (TypeError, ValueError) as e:
            raise MalformedModelResponse(f"Usage token counts are not integers: {e}") from e

    def complete(self, prompt: str, model: Optional[str] = None,
                 temperature: Optional[float] = None) -> ModelResponse:
        """
        Generate a single completion without any conversation state.

        Args:
            prompt: The input prompt
            model: Optional model override
            temperature: Optional temperature override

        Returns:
            ModelResponse with the generated text
        """
        payload = {
            "model": model or self.default_model,
            "prompt": prompt,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
        }
        data = self._post("/v1/completions", payload)
        choices = data.get("choices") or []
        if (not isinstance(choices, list) or not choices or not isinstance(choices[0], dict)
                or not isinstance(choices[0].get("text"), str)):
            raise MalformedModelResponse("Completion contained no text choice")

        return ModelResponse(
            text=choices[0]["text"],
            usage=self._parse_usage(data),
            stop_reason=choices[0].get("finish_reason") or "stop",
        )

    def embed(self, text: str) -> List[float]:
        """
        Get an embedding vector from the configured embedding model.

        Args:
            text: Text to embed

        Returns:
            Embedding as a list of floats
        """
        try:
            data = self._post("/api/embeddings", {"model": self.embedding_model, "prompt": text})
        except (ModelUnavailable, MalformedModelResponse) as e:
            raise EmbeddingError(str(e)) from e

        embedding = data.get("embedding")
        if not embedding or not isinstance(embedding, list):
            raise EmbeddingError("Ollama returned an empty embedding")
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Ollama returned a non-numeric embedding: {e}") from e

    def list_models(self) -> List[str]:
        """
        List available models from Ollama.

        Returns:
            List of model names
        """
        url = f"{self.base_url}/api/tags"

        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Error listing Ollama models: {str(e)}")
            raise ModelUnavailable(f"Could not list Ollama models: {e}") from e

        try:
            return [model['name'] for model in response.json()['models']]
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error(f"Unexpected model list from Ollama: {str(e)}")
            raise MalformedModelResponse(f"Ollama returned an unexpected model list: {e}") from e

    def check_health(self) -> bool:
        """
        Check if the Ollama server is reachable and healthy.
        Returns True if healthy, False otherwise.
        """
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Ollama health check failed: {e}")
            return False
