"""
AI Service: handles all LLM interactions for the journal (chart reading,
trade feedback, pre-trade checks, market chat, news, watchlist scans, live
prices, ticker search).
Supports: Google Gemini (default), Groq, Anthropic Claude, OpenAI GPT-4o.

Enrichment calls log and return an empty/unknown result on failure. The
watchlist scan and feature ideation raise RemoteUnavailable instead.
"""
import base64
import json
import logging
import re
import time
from typing import Optional

from pydantic import ValidationError as ModelValidationError

from config.settings import settings
from swingjournal.errors import RemoteUnavailable
from swingjournal.models.assistant import (
    ChatMessage,
    Citation,
    FeatureIdea,
    NewsAlert,
    TickerSuggestion,
    WatchlistScanResult,
)
from swingjournal.models.trade import Trade

logger = logging.getLogger("swingjournal.ai")

FAST_MODEL = {
    "gemini": "gemini-2.5-flash",
    "groq": "llama-3.3-70b-versatile",
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
}
DEEP_MODEL = {
    "gemini": "gemini-2.5-pro",
    "groq": "llama-3.3-70b-versatile",
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
}

_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")

_IMAGE_SIGNATURES = [
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF8", "image/gif"),
    (b"RIFF", "image/webp"),
]


def image_mime_type(image_base64: str) -> str:
    """Sniff the image format from its leading bytes; PNG when unrecognised."""
    try:
        head = base64.b64decode(image_base64[:16])
    except ValueError:
        return "image/png"
    for signature, mime_type in _IMAGE_SIGNATURES:
        if head.startswith(signature):
            return mime_type
    return "image/png"


def _call_llm(
    system_prompt: str,
    user_prompt: str,
    json_mode: bool = False,
    image_base64: Optional[str] = None,
    history: Optional[list[ChatMessage]] = None,
    deep: bool = False,
) -> str:
    provider = settings.AI_PROVIDER
    model_name = (DEEP_MODEL if deep else FAST_MODEL).get(provider, FAST_MODEL["openai"])
    history = history or []
    mime_type = image_mime_type(image_base64) if image_base64 else None
    try:
        if provider == "gemini":
            import google.generativeai as genai
            genai.configure(api_key=settings.GOOGLE_API_KEY)
            model = genai.GenerativeModel(model_name, system_instruction=system_prompt)
            gen_config = {}
            if json_mode:
                gen_config["response_mime_type"] = "application/json"
            parts = []
            if image_base64:
                parts.append({"mime_type": mime_type, "data": base64.b64decode(image_base64)})
            parts.append(user_prompt)
            contents = [{"role": m.role, "parts": [m.text]} for m in history]
            contents.append({"role": "user", "parts": parts})
            response = model.generate_content(contents, generation_config=gen_config or None)
            return response.text

        elif provider == "anthropic":
            from anthropic import Anthropic
            client = Anthropic(api_key=settings.ANTHROPIC_API_KEY)
            content = []
            if image_base64:
                content.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": mime_type, "data": image_base64},
                })
            content.append({"type": "text", "text": user_prompt})
            messages = [
                {"role": "assistant" if m.role == "model" else "user", "content": m.text}
                for m in history
            ]
            messages.append({"role": "user", "content": content})
            response = client.messages.create(
                model=model_name,
                max_tokens=4096,
                system=system_prompt,
                messages=messages,
            )
            return response.content[0].text

        # groq and openai share the chat-completions shape
        if provider == "groq":
            from groq import Groq
            client = Groq(api_key=settings.GROQ_API_KEY)
        else:
            from openai import OpenAI
            client = OpenAI(api_key=settings.OPENAI_API_KEY)
        messages = [{"role": "system", "content": system_prompt}]
        messages += [
            {"role": "assistant" if m.role == "model" else "user", "content": m.text}
            for m in history
        ]
        if image_base64:
            messages.append({"role": "user", "content": [
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_base64}"}},
                {"type": "text", "text": user_prompt},
            ]})
        else:
            messages.append({"role": "user", "content": user_prompt})
        kwargs = {"model": model_name, "messages": messages, "max_tokens": 4096}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = client.chat.completions.create(**kwargs)
        return response.choices[0].message.content
    except Exception as e:
        raise RemoteUnavailable(f"{provider} request failed: {e}") from e


def _extract_json(text: str, pattern: re.Pattern):
    """Pull the first JSON array/object out of a free-text reply."""
    match = pattern.search(text or "")
    if not match:
        raise RemoteUnavailable("No JSON found in AI response")
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise RemoteUnavailable(f"AI returned invalid JSON: {e}") from e


def _fmt_money(value: Optional[float]) -> str:
    return f"${value:.2f}" if value is not None else "n/a"


# ──────────────────────────────────────────────
# 1. CHART READER: screenshot → setup analysis
# ──────────────────────────────────────────────

CHART_ANALYSIS_PROMPT = (
    "Analyze this trading chart. Identify key patterns, support/resistance levels, "
    "and indicators that might justify the entry. What are the potential risks "
    "visible on the chart?"
)

CHART_ANALYST_SYSTEM = """You are a technical analyst reviewing a swing trader's chart screenshot.
Be specific about levels and patterns you can actually see. Use short bullet points."""


def analyze_chart_image(image_base64: str, prompt: str = CHART_ANALYSIS_PROMPT) -> str:
    try:
        return _call_llm(CHART_ANALYST_SYSTEM, prompt, image_base64=image_base64)
    except RemoteUnavailable as e:
        logger.error("Chart analysis failed: %s", e)
        return "Sorry, I couldn't analyze the image. Please try again."


# ──────────────────────────────────────────────
# 2. TRADE COACH: feedback and pre-trade check
# ──────────────────────────────────────────────

TRADE_COACH_SYSTEM = """You are a swing trading coach. Your goal is to educate, not judge.
Tone: Supportive but honest. Like a mentor, not a critic. Use the trader's own numbers."""


def get_trade_feedback(trade: Trade) -> str:
    result = "Win" if trade.is_win else "Loss"
    mindset = trade.mindset.value if trade.mindset else "Not specified"
    prompt = f"""
Analyze this swing trade and provide constructive feedback.
- Ticker: {trade.ticker}
- Entry Date: {trade.entry_date} at {_fmt_money(trade.entry_price)}
- Exit Date: {trade.exit_date or 'still open'} at {_fmt_money(trade.exit_price)}
- Result: {result + ' of ' + _fmt_money(trade.pnl) if trade.pnl is not None else 'still open'}
- Strategy: {trade.strategy}
- My Mindset: {mindset}
- Notes: {trade.notes}
What did I do well? What could be improved? Focus on the psychological and tactical aspects based on my notes and mindset.
"""
    try:
        return _call_llm(TRADE_COACH_SYSTEM, prompt)
    except RemoteUnavailable as e:
        logger.error("Trade feedback failed: %s", e)
        return "Sorry, I couldn't provide feedback on the trade. Please try again."


def get_pre_trade_analysis(
    ticker: str,
    entry_price: float,
    stop_loss: Optional[float],
    take_profit: Optional[float],
    strategy: str = "",
    mindset: Optional[str] = None,
) -> str:
    prompt = f"""
Provide a brief "sanity check" analysis for this upcoming swing trade plan.
- Ticker: {ticker}
- Planned Entry: {_fmt_money(entry_price)}
- Stop Loss: {_fmt_money(stop_loss)}
- Profit Target: {_fmt_money(take_profit)}
- My Mindset: {mindset or 'Not specified'}
- Strategy: {strategy}

Check for potential red flags. Specifically look for:
1.  Any major company news (earnings, announcements) in the next 1-2 weeks.
2.  Obvious major technical conflicts (e.g., trading directly into a major resistance/support level).
3.  High levels of recent volatility or unusual market sentiment.

Keep the analysis concise and to the point.
"""
    try:
        return _call_llm(TRADE_COACH_SYSTEM, prompt, deep=True)
    except RemoteUnavailable as e:
        logger.error("Pre-trade analysis failed: %s", e)
        return "Sorry, I couldn't provide a pre-trade analysis at this time."


# ──────────────────────────────────────────────
# 3. MARKET CHAT & STRATEGY DEEP DIVE
# ──────────────────────────────────────────────

MARKET_CHAT_SYSTEM = """You are a market research assistant for a swing trader.
Answer with current, factual information. When you rely on a source, list it at the
end under "Sources:" as markdown links, one per line: [Title](https://...)."""


def extract_citations(text: str) -> list[Citation]:
    seen = set()
    citations = []
    for title, uri in _LINK_PATTERN.findall(text or ""):
        if uri in seen:
            continue
        seen.add(uri)
        citations.append(Citation(uri=uri, title=title or uri))
    return citations


def get_market_chat_response(history: list[ChatMessage], message: str) -> ChatMessage:
    try:
        text = _call_llm(MARKET_CHAT_SYSTEM, message, history=history)
    except RemoteUnavailable as e:
        logger.error("Market chat failed: %s", e)
        return ChatMessage(role="model", text="Sorry, I encountered an error. Please try again.")
    return ChatMessage(role="model", text=text, citations=extract_citations(text))


STRATEGY_ANALYST_SYSTEM = """You are a senior trading strategist. Be thorough and concrete.
Use markdown headers (##) and bullet points."""


def get_deep_strategy_analysis(strategy: str) -> str:
    prompt = (
        "Please provide a deep, comprehensive analysis of the following swing trading "
        "strategy. Cover potential strengths, weaknesses, risk management considerations, "
        "market conditions where it might excel or fail, and suggestions for improvement "
        f"or backtesting. Strategy: {strategy[:4000]}"
    )
    try:
        return _call_llm(STRATEGY_ANALYST_SYSTEM, prompt, deep=True)
    except RemoteUnavailable as e:
        logger.error("Deep strategy analysis failed: %s", e)
        return "Sorry, I couldn't analyze the strategy. Please try again."


# ──────────────────────────────────────────────
# 4. NEWS & WATCHLIST
# ──────────────────────────────────────────────

JSON_ONLY_SYSTEM = """You are a financial research assistant. Reply ONLY with the JSON requested, no prose."""


def fetch_news_for_tickers(tickers: list[str]) -> list[NewsAlert]:
    if not tickers:
        return []
    prompt = f"""
For each of the following stock tickers, find the single most significant and recent (last 24-48 hours) news headline and its source URL.
Tickers: {', '.join(tickers)}.
If no significant news is found for a ticker, omit it from the result.
Return the response ONLY as a JSON array of objects. Each object must have "ticker", "headline", and "uri" keys.
"""
    try:
        items = _extract_json(_call_llm(JSON_ONLY_SYSTEM, prompt), _ARRAY_PATTERN)
    except RemoteUnavailable as e:
        logger.warning("News fetch returned nothing usable: %s", e)
        return []
    now_ms = int(time.time() * 1000)
    alerts = []
    for item in items:
        try:
            alerts.append(NewsAlert(**item, timestamp=now_ms))
        except (TypeError, ModelValidationError):
            logger.warning("Skipping malformed news item: %s", item)
    return alerts


def scan_watchlist_tickers(tickers: list[str]) -> list[WatchlistScanResult]:
    prompt = f"""
Act as a swing trading analyst. For each ticker provided, find:
1.  Any significant, recent news that could act as a catalyst.
2.  Potential technical analysis patterns (e.g., "bull flag forming on daily", "approaching 50-day moving average support", "breakout above resistance at $123").

Keep the analysis for each ticker concise and actionable.

Tickers: {', '.join(tickers)}

Return the response ONLY as a JSON array of objects. Each object must have "ticker" and "analysis" keys.
"""
    items = _extract_json(_call_llm(JSON_ONLY_SYSTEM, prompt), _ARRAY_PATTERN)
    try:
        return [WatchlistScanResult.model_validate(item) for item in items]
    except ModelValidationError as e:
        raise RemoteUnavailable(f"Watchlist scan returned unexpected items: {e}") from e


# ──────────────────────────────────────────────
# 5. PRICES & TICKER SEARCH
# ──────────────────────────────────────────────

def _to_price(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


def get_current_price(ticker: str) -> Optional[float]:
    prompt = f"What is the current stock price of {ticker}? Return only the number."
    try:
        text = _call_llm(JSON_ONLY_SYSTEM, prompt)
    except RemoteUnavailable as e:
        logger.error("Price lookup for %s failed: %s", ticker, e)
        return None
    cleaned = re.sub(r"[^0-9.]", "", text or "")
    return _to_price(cleaned) if cleaned else None


def get_live_prices(tickers: list[str]) -> dict[str, Optional[float]]:
    """Price map for the given tickers; unknown prices are None."""
    if not tickers:
        return {}
    prompt = f"""
For the following stock tickers: {', '.join(tickers)}.
Provide their current market prices.
Return the response ONLY as a JSON object where keys are the ticker symbols and values are the numerical prices.
If you cannot find a price for a ticker, set its value to null.
Example: {{"AAPL": 175.50, "GOOGL": 140.25, "INVALIDTICKER": null}}
"""
    try:
        raw = _extract_json(_call_llm(JSON_ONLY_SYSTEM, prompt, json_mode=True),
                            _OBJECT_PATTERN)
    except RemoteUnavailable as e:
        logger.error("Live price fetch failed: %s", e)
        return {t: None for t in tickers}
    if not isinstance(raw, dict):
        return {t: None for t in tickers}
    return {t: _to_price(raw.get(t)) for t in tickers}


def search_ticker_symbols(query: str) -> list[TickerSuggestion]:
    prompt = f"""
Find stock ticker symbols for companies matching the query: "{query[:100]}".
Provide up to 5 relevant results.
For each result, give the company name and its primary stock ticker symbol.

Return the response ONLY as a JSON array of objects. Each object must have "name" and "ticker" keys.
Example: [{{"name": "Apple Inc.", "ticker": "AAPL"}}, {{"name": "Amazon.com, Inc.", "ticker": "AMZN"}}]
"""
    try:
        items = _extract_json(_call_llm(JSON_ONLY_SYSTEM, prompt), _ARRAY_PATTERN)
        return [TickerSuggestion.model_validate(item) for item in items][:5]
    except (RemoteUnavailable, ModelValidationError) as e:
        logger.warning("Ticker search for %r failed: %s", query, e)
        return []


# ──────────────────────────────────────────────
# 6. FEATURE IDEATION
# ──────────────────────────────────────────────

PRODUCT_MANAGER_SYSTEM = """You are an expert product manager specializing in AI-powered FinTech applications."""


def get_feature_ideation() -> list[FeatureIdea]:
    prompt = """
Based on the latest AI capabilities and trends in retail trading, generate 3 innovative feature ideas for an advanced swing trading journal application. The application already has the following features:
- Trade logging with chart screenshot analysis (image understanding).
- An AI market chat with cited sources for real-time news and data.
- Deep strategy analysis using a powerful reasoning model.
- P/L performance charts.
- Data import/export via CSV and Google Sheets.

For each idea, provide:
1. A short, catchy title.
2. A detailed description of the feature and the user benefit.
3. The recommended model for the task.

Return the response as a JSON array of objects with "title", "description" and "modelToUse" keys.
"""
    items = _extract_json(_call_llm(PRODUCT_MANAGER_SYSTEM, prompt), _ARRAY_PATTERN)
    try:
        return [FeatureIdea.model_validate(item) for item in items]
    except ModelValidationError as e:
        raise RemoteUnavailable(f"Feature ideation returned unexpected items: {e}") from e
