"""
Gemini signal provider.

Calls the Gemini `generateContent` REST endpoint with a JSON response
schema and returns the decoded items. Rate-limit responses (HTTP 429 or a
RESOURCE_EXHAUSTED status in the body) surface as RateLimitError so the
generator can back off; everything else is a ProviderError.

API Docs: https://ai.google.dev/api/generate-content
"""

import ssl
from typing import Any, Optional

import certifi
import httpx
import orjson
import structlog

from src.betsignal.feeds.generator import ProviderError, RateLimitError, SignalProvider
from src.betsignal.models.schemas import MatchSnapshot, SignalType, TicketType

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


# =============================================================================
# Response schemas
# =============================================================================

SIGNAL_RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "matchId": {"type": "STRING"},
            "type": {"type": "STRING", "enum": [t.value for t in SignalType]},
            "description": {"type": "STRING"},
            "confidence": {"type": "NUMBER"},
            "oddSuggested": {"type": "NUMBER"},
            "analysis": {"type": "STRING"},
            "keyFactors": {"type": "ARRAY", "items": {"type": "STRING"}},
        },
        "required": [
            "matchId", "type", "description", "confidence",
            "oddSuggested", "analysis", "keyFactors",
        ],
    },
}

TICKET_RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "type": {"type": "STRING", "enum": [t.value for t in TicketType]},
            "totalOdd": {"type": "NUMBER"},
            "confidence": {"type": "NUMBER"},
            "selections": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "matchName": {"type": "STRING"},
                        "market": {"type": "STRING"},
                        "odd": {"type": "NUMBER"},
                    },
                    "required": ["matchName", "market", "odd"],
                },
            },
            "analysis": {"type": "STRING"},
        },
        "required": ["type", "totalOdd", "confidence", "selections", "analysis"],
    },
}


# =============================================================================
# Prompts
# =============================================================================

def _format_form(form: tuple[str, ...]) -> str:
    return ", ".join(form) if form else "n/a"


def describe_match(snapshot: MatchSnapshot) -> str:
    """Live stats block for one match, plus pre-match context when known."""
    home, away = snapshot.home, snapshot.away
    lines = [
        f"Match id: {snapshot.match_id}",
        f"Match: {home.name} ({home.score}) vs {away.name} ({away.score})",
        f"Minute: {snapshot.minute}'",
        f"League: {snapshot.league}",
    ]
    for side in (home, away):
        lines.extend([
            f"{side.name} stats:",
            f"- Possession: {side.possession}%",
            f"- Shots on target: {side.shots_on_target}",
            f"- Shots off target: {side.shots_off_target}",
            f"- Corners: {side.corners}",
            f"- Cards: {side.yellow_cards} yellow, {side.red_cards} red",
            f"- Dangerous attacks: {side.dangerous_attacks}",
        ])

    ctx = snapshot.pre_match
    if ctx is not None:
        lines.extend([
            "Pre-match context:",
            f"- {home.name} form: {_format_form(ctx.home_form)} (position {ctx.league_position[0]})",
            f"- {away.name} form: {_format_form(ctx.away_form)} (position {ctx.league_position[1]})",
            f"- H2H: {ctx.h2h[0]} {home.name} wins, {ctx.h2h[1]} draws, {ctx.h2h[2]} {away.name} wins",
            f"- Average goals: {ctx.avg_goals[0]}/{ctx.avg_goals[1]}, "
            f"average corners: {ctx.avg_corners[0]}/{ctx.avg_corners[1]}",
        ])
    return "\n".join(lines)


def build_signal_prompt(snapshots: list[MatchSnapshot]) -> str:
    matches = "\n\n".join(describe_match(s) for s in snapshots)
    return (
        "Analyse the live statistics of the football matches below together with their "
        "historical context and produce 1 or 2 likely betting signals per match.\n\n"
        f"{matches}\n\n"
        "For each signal return the matchId exactly as given, the market type, a short "
        "market description, a text analysis combining live data with the historical "
        "trend, and a list of 3 to 4 key factors."
    )


def build_ticket_prompt(snapshots: list[MatchSnapshot]) -> str:
    matches = "\n".join(
        f"- {s.match_name} ({s.minute}'): {s.home.score}-{s.away.score}. "
        f"Corners: {s.home.corners}-{s.away.corners}. "
        f"Dangerous attacks: {s.home.dangerous_attacks}-{s.away.dangerous_attacks}."
        for s in snapshots
    )
    return (
        "Based on the live football matches below, build 3 ready tickets "
        "(combinations of 2 to 3 bets):\n"
        "1. SAFE (total odd ~2.0, high confidence)\n"
        "2. MODERATE (total odd ~4.0)\n"
        "3. AGGRESSIVE (total odd 10.0+)\n\n"
        f"LIVE MATCHES:\n{matches}"
    )


# =============================================================================
# Provider
# =============================================================================

class GeminiSignalProvider(SignalProvider):
    """
    Async Gemini client.

    Usage:
        provider = GeminiSignalProvider(api_key="...")
        items = await provider.request_signals(batch)
        await provider.close()
    """

    def __init__(
        self,
        api_key: str,
        signal_model: str = "gemini-3-flash-preview",
        ticket_model: str = "gemini-3-pro-preview",
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 20.0,
        temperature: float = 0.4,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.signal_model = signal_model
        self.ticket_model = ticket_model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature

        self.logger = logger.bind(provider="gemini")

        # HTTP client (transport is injectable for tests)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        # Stats
        self._requests = 0
        self._rate_limited = 0
        self._errors = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            if self._transport is not None:
                self._client = httpx.AsyncClient(
                    transport=self._transport,
                    timeout=httpx.Timeout(self.timeout_seconds),
                )
            else:
                ssl_context = ssl.create_default_context(cafile=certifi.where())
                self._client = httpx.AsyncClient(
                    verify=ssl_context,
                    timeout=httpx.Timeout(self.timeout_seconds),
                    headers={"Content-Type": "application/json"},
                )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def request_signals(self, snapshots: list[MatchSnapshot]) -> list[Any]:
        return await self._generate(
            model=self.signal_model,
            prompt=build_signal_prompt(snapshots),
            schema=SIGNAL_RESPONSE_SCHEMA,
        )

    async def request_tickets(self, snapshots: list[MatchSnapshot]) -> list[Any]:
        return await self._generate(
            model=self.ticket_model,
            prompt=build_ticket_prompt(snapshots),
            schema=TICKET_RESPONSE_SCHEMA,
        )

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _generate(self, model: str, prompt: str, schema: dict) -> list[Any]:
        if not self.api_key:
            raise ProviderError("Gemini API key not configured")

        client = await self._get_client()
        url = f"{self.base_url}/{model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }

        self._requests += 1
        try:
            response = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as e:
            self._errors += 1
            raise ProviderError(f"Gemini request failed: {e}") from e

        if response.status_code == 429 or (
            response.status_code != 200 and "RESOURCE_EXHAUSTED" in response.text
        ):
            self._rate_limited += 1
            raise RateLimitError(f"Gemini rate limited (HTTP {response.status_code})")

        if response.status_code != 200:
            self._errors += 1
            self.logger.warning(
                "Gemini API error",
                status=response.status_code,
                body=response.text[:200],
            )
            raise ProviderError(f"Gemini HTTP {response.status_code}")

        return self._parse(response.content)

    def _parse(self, body: bytes) -> list[Any]:
        """Pull the JSON array out of candidates[0].content.parts[*].text."""
        try:
            data = orjson.loads(body)
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(p.get("text", "") for p in parts)
        except (orjson.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            self._errors += 1
            raise ProviderError(f"Malformed Gemini response: {e}") from e

        if not text.strip():
            return []

        try:
            items = orjson.loads(text)
        except orjson.JSONDecodeError as e:
            self._errors += 1
            raise ProviderError(f"Gemini returned non-JSON text: {e}") from e

        if not isinstance(items, list):
            self._errors += 1
            raise ProviderError(f"Gemini returned {type(items).__name__}, expected a list")
        return items

    def get_metrics(self) -> dict:
        return {
            "requests": self._requests,
            "rate_limited": self._rate_limited,
            "errors": self._errors,
        }
