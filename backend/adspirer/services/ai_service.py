"""
AI Service — Multi-provider LLM access (OpenAI GPT, Anthropic Claude) for the chat assistant.
Welcome messages, plain chat completion (streaming and not), and the two calls of the
campaign-data query pipeline.
"""

import json
import logging
from typing import AsyncIterator, Optional
import anthropic
import openai
from openai import AsyncOpenAI
from anthropic import AsyncAnthropic
from adspirer.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

CHAT_SYSTEM_PROMPT = """You are an AI assistant for Adspirer, a platform that helps manage retail media \
advertising campaigns across Amazon and Google.

Help users understand campaign performance, plan new campaigns, and improve ROAS, ACOS, CTR and conversions.
Key metrics:
- ACOS (Advertising Cost of Sale) = Spend / Sales × 100 (lower is usually better)
- ROAS (Return on Ad Spend) = Sales / Spend (higher is better)
- CTR (Click-Through Rate) = Clicks / Impressions × 100
- CPC (Cost Per Click) = Spend / Clicks

Be concise and specific. Use markdown tables when comparing several campaigns.
If you don't have the data to answer, say so instead of guessing."""

WELCOME_PROMPT = """Write a short, friendly welcome message (2-4 sentences) for a user opening a new chat \
with the Adspirer assistant. Mention that you can analyze their Amazon and Google campaign performance, \
answer questions about metrics like ROAS and ACOS, and help them set up new campaigns. \
Suggest one example question. Do not use headings."""

FALLBACK_WELCOME_MESSAGE = (
    "Hi! I'm your Adspirer assistant. I can analyze your Amazon and Google campaign performance, "
    "explain metrics like ROAS and ACOS, and help you set up new campaigns. "
    "Try asking: \"Which of my campaigns had the best ROAS in the last 30 days?\""
)

QUERY_UNDERSTANDING_PROMPT = """You translate advertising questions into lookup filters for a campaign \
metrics store.

Available data (one row per campaign per day):
- amazon: campaign_id, campaign_name, profile_id, date, impressions, clicks, cost, conversions, sales
- google: campaign_id, campaign_name, customer_id, date, impressions, clicks, cost, conversions, conversion_value

Respond ONLY with a JSON object:
{
  "platforms": ["amazon" | "google"],   // empty = both
  "days": <integer look-back window or null>,
  "campaign_ids": ["..."],              // explicit ids mentioned, else empty
  "campaign_name": "<name fragment or null>",
  "metrics": ["impressions" | "clicks" | "cost" | "sales" | "conversions" | "ctr" | "cpc" | "roas" | "acos"]
}"""

ANALYST_SYSTEM_PROMPT = """You are an AI assistant specialized in ad campaign analysis. Your role is to help \
marketers understand their campaign performance by analyzing data from their Amazon and Google advertising accounts.

Follow these guidelines:
1. Be concise and precise in your answers.
2. When referencing metrics, include the exact numbers from the provided context.
3. Provide actionable insights based on the data.
4. Avoid making assumptions beyond what the data shows.
5. If you can't answer a question based on the provided data, clearly say so rather than making up information.

Your goal is to help users understand their campaign performance and make data-driven decisions."""

# Errors raised by either SDK (HTTP status, connection, timeout)
AI_PROVIDER_ERRORS = (openai.APIError, anthropic.APIError)

CHAT_TEMPERATURE = 0.7
CHAT_MAX_TOKENS = 1000
QUERY_UNDERSTANDING_TEMPERATURE = 0.3


def _parse_model_id(model_id: Optional[str]) -> tuple[str, str]:
    """Parse 'provider:model' into (provider, model). Fallback to OpenAI config."""
    model_id = model_id or settings.default_llm_id
    if model_id and ":" in model_id:
        p, m = model_id.split(":", 1)
        return (p.strip().lower(), m.strip())
    return ("openai", settings.openai_model)


class AIService:
    """Multi-provider chat service (OpenAI GPT, Anthropic Claude)."""

    def __init__(
        self,
        model_id: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
    ):
        self.provider, self.model = _parse_model_id(model_id)
        self._openai_client: Optional[AsyncOpenAI] = None
        self._anthropic_client: Optional[AsyncAnthropic] = None

        openai_key = openai_api_key or settings.openai_api_key
        anthropic_key = anthropic_api_key or settings.anthropic_api_key

        if self.provider == "openai":
            if not openai_key:
                raise ValueError("OPENAI_API_KEY not configured.")
            self._openai_client = AsyncOpenAI(api_key=openai_key)
        elif self.provider == "anthropic":
            if not anthropic_key:
                raise ValueError("ANTHROPIC_API_KEY not configured.")
            self._anthropic_client = AsyncAnthropic(api_key=anthropic_key)
        else:
            raise ValueError(f"Unknown AI provider: {self.provider}")

    @property
    def model_id(self) -> str:
        return f"{self.provider}:{self.model}"

    @staticmethod
    def _split_system(messages: list[dict]) -> tuple[str, list[dict]]:
        """Anthropic takes system text separately from the turn list."""
        system = ""
        turns = []
        for m in messages:
            role = m.get("role", "user")
            content = m.get("content", "")
            if role == "system":
                system += content + "\n\n" if content else ""
            else:
                turns.append({"role": "user" if role == "user" else "assistant", "content": content})
        return system.strip(), turns

    async def _completion(
        self,
        messages: list[dict],
        temperature: float = CHAT_TEMPERATURE,
        max_tokens: int = CHAT_MAX_TOKENS,
        json_response: bool = False,
    ) -> str:
        """Call the appropriate provider's completion API."""
        if self.provider == "openai":
            kwargs = dict(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            if json_response:
                kwargs["response_format"] = {"type": "json_object"}
            response = await self._openai_client.chat.completions.create(**kwargs)
            return response.choices[0].message.content or ""

        system, turns = self._split_system(messages)
        response = await self._anthropic_client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system or None,
            messages=turns,
        )
        if response.content and response.content[0].type == "text":
            return response.content[0].text
        return ""

    async def _stream_completion(
        self,
        messages: list[dict],
        temperature: float = CHAT_TEMPERATURE,
        max_tokens: int = CHAT_MAX_TOKENS,
    ) -> AsyncIterator[str]:
        """Yield text deltas as the provider produces them."""
        if self.provider == "openai":
            stream = await self._openai_client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
            return

        system, turns = self._split_system(messages)
        async with self._anthropic_client.messages.stream(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system or None,
            messages=turns,
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text

    @staticmethod
    def _chat_messages(history: list[dict], system_prompt: Optional[str]) -> list[dict]:
        messages = [{"role": "system", "content": system_prompt or CHAT_SYSTEM_PROMPT}]
        for msg in history[-20:]:  # Last 20 messages for context
            messages.append({"role": msg.get("role", "user"), "content": msg.get("content", "")})
        return messages

    async def generate_welcome_message(self, user_context: Optional[str] = None) -> str:
        messages = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
        if user_context:
            messages.append({"role": "system", "content": f"About this user:\n{user_context}"})
        messages.append({"role": "user", "content": WELCOME_PROMPT})
        content = await self._completion(messages, max_tokens=300)
        return content.strip()

    async def chat(self, history: list[dict], system_prompt: Optional[str] = None) -> str:
        """Complete the conversation; history ends with the latest user turn."""
        try:
            return await self._completion(self._chat_messages(history, system_prompt))
        except Exception as e:
            logger.error(f"AI chat failed: {e}")
            raise

    def stream_chat(self, history: list[dict], system_prompt: Optional[str] = None) -> AsyncIterator[str]:
        return self._stream_completion(self._chat_messages(history, system_prompt))

    async def understand_query(self, query: str, extracted: dict) -> dict:
        """
        First LLM call: turn the question into lookup filters.
        Returns {} when the model's reply is not a JSON object.
        """
        messages = [
            {"role": "system", "content": QUERY_UNDERSTANDING_PROMPT},
            {"role": "user", "content": (
                f"Question: {query}\n\n"
                f"Heuristically extracted parameters:\n{json.dumps(extracted, default=str)}"
            )},
        ]
        content = await self._completion(
            messages,
            temperature=QUERY_UNDERSTANDING_TEMPERATURE,
            max_tokens=500,
            json_response=True,
        )
        try:
            filters = json.loads(content)
        except json.JSONDecodeError:
            logger.warning(f"Query understanding returned non-JSON: {content[:200]}")
            return {}
        return filters if isinstance(filters, dict) else {}

    def _answer_messages(self, context: str) -> list[dict]:
        return [
            {"role": "system", "content": ANALYST_SYSTEM_PROMPT},
            {"role": "user", "content": context},
        ]

    async def answer_with_context(self, context: str) -> str:
        """Second LLM call: phrase the answer from the assembled data context."""
        return await self._completion(self._answer_messages(context))

    def stream_answer_with_context(self, context: str) -> AsyncIterator[str]:
        return self._stream_completion(self._answer_messages(context))


def create_ai_service(
    model_id: Optional[str] = None,
    openai_api_key: Optional[str] = None,
    anthropic_api_key: Optional[str] = None,
) -> AIService:
    """Factory function to create an AI service instance. Keys from env unless passed."""
    return AIService(
        model_id=model_id,
        openai_api_key=openai_api_key,
        anthropic_api_key=anthropic_api_key,
    )
