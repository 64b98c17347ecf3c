"""
FastAPI backend: REST API for Swing Journal.

Run with:  uvicorn swingjournal.api.main:create_app --factory
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import BaseModel, Field
from contextlib import asynccontextmanager
from typing import Optional
import logging

from config.settings import settings
from swingjournal.core import analytics
from swingjournal.core.drafts import ExitDraft, ProfileDraft, TradeDraft
from swingjournal.core.ledger import TradeLedger
from swingjournal.core.refresh import PricePoller, TickerSuggestions
from swingjournal.core.stores import BrokerCredentialStore, ProfileStore, Watchlist
from swingjournal.database import KeyValueStorage, SqliteKeyValueStore
from swingjournal.errors import JournalError, NotFoundError, RemoteUnavailable, ValidationError
from swingjournal.models.assistant import ChatMessage
from swingjournal.models.profile import BrokerCredentials
from swingjournal.models.trade import Mindset, Trade
from swingjournal.services import ai_service, broker_service, csv_service, sheets_service

logger = logging.getLogger("swingjournal")


def _to_http(e: JournalError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, RemoteUnavailable):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _dump(trade: Trade) -> dict:
    return trade.to_storage()


# ── Request models ──

class TradeIn(BaseModel):
    ticker: Optional[str] = None
    entry_date: Optional[str] = None
    entry_price: Optional[float] = None
    shares: Optional[float] = None
    strategy: Optional[str] = None
    notes: Optional[str] = None
    mindset: Optional[Mindset] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    exit_date: Optional[str] = None
    exit_price: Optional[float] = None
    chart_image_base64: Optional[str] = None
    chart_analysis: Optional[str] = None


class ExitIn(BaseModel):
    exit_date: Optional[str] = None
    exit_price: float = Field(gt=0)
    notes: str = ""


class ExitPreviewIn(BaseModel):
    exit_price: float


class RiskRewardIn(BaseModel):
    entry_price: float
    shares: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


class CsvImportIn(BaseModel):
    content: str


class ProfileIn(BaseModel):
    username: Optional[str] = None
    avatar: Optional[str] = None


class WatchlistIn(BaseModel):
    ticker: str


class ChartAnalysisIn(BaseModel):
    image_base64: str
    prompt: Optional[str] = None


class PreTradeIn(BaseModel):
    ticker: str
    entry_price: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    strategy: str = ""
    mindset: Optional[Mindset] = None


class ChatIn(BaseModel):
    message: str
    history: list[ChatMessage] = []


class StrategyIn(BaseModel):
    strategy: str = Field(min_length=1)


class TickerInputIn(BaseModel):
    text: str


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Reject requests without a valid API key. Skips /api/health and when no key is configured."""

    def __init__(self, app, api_key: str = ""):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next):
        if self.api_key and request.url.path != "/api/health":
            key = request.headers.get("x-api-key") or request.query_params.get("api_key")
            if key != self.api_key:
                return JSONResponse({"detail": "Invalid or missing API key"}, status_code=401)
        return await call_next(request)


def create_app(
    storage: Optional[KeyValueStorage] = None,
    start_poller: bool = True,
    api_key: Optional[str] = None,
) -> FastAPI:
    storage = storage if storage is not None else SqliteKeyValueStore()
    ledger = TradeLedger(storage)
    profiles = ProfileStore(storage)
    watchlist = Watchlist(storage)
    broker_creds = BrokerCredentialStore(storage)
    poller = PricePoller(
        ai_service.get_live_prices,
        lambda: [t.ticker for t in ledger.open_trades()],
        interval=settings.PRICE_POLL_SECONDS,
    )
    suggestions = TickerSuggestions(
        ai_service.search_ticker_symbols,
        delay=settings.TICKER_DEBOUNCE_MS / 1000,
    )

    def _log_ledger_change(trades: list[Trade]):
        logger.info(
            "Ledger now holds %d trades (realized P/L %.2f, win rate %.1f%%)",
            len(trades), analytics.total_realized_pnl(trades), analytics.win_rate(trades),
        )

    ledger.subscribe(_log_ledger_change)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for problem in settings.validate():
            logger.warning("Config: %s", problem)
        if start_poller:
            poller.start()
        yield
        poller.stop()
        suggestions.close()

    app = FastAPI(title="Swing Journal API", version="1.0.0", lifespan=lifespan)
    app.state.storage = storage
    app.state.ledger = ledger
    app.state.poller = poller
    app.state.suggestions = suggestions

    # ── CORS, restricted to known origins ──
    _cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(APIKeyMiddleware, api_key=settings.API_KEY if api_key is None else api_key)

    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "trades": len(ledger),
            "ai_provider": settings.AI_PROVIDER,
            "price_polling": poller.running,
            "sheets_configured": bool(settings.GOOGLE_SHEETS_ACCESS_TOKEN),
        }

    # ──────────────────────────────────────
    # TRADES
    # ──────────────────────────────────────

    @app.get("/api/trades")
    def list_trades(status: Optional[str] = None):
        trades = ledger.trades
        if status:
            trades = [t for t in trades if t.status.value == status]
        return [_dump(t) for t in trades]

    @app.get("/api/trades/{trade_id}")
    def get_trade(trade_id: str):
        try:
            return _dump(ledger.get(trade_id))
        except JournalError as e:
            raise _to_http(e)

    def _apply(draft: TradeDraft, req: TradeIn):
        fields = req.model_dump(exclude_unset=True)
        image = fields.pop("chart_image_base64", None)
        analysis = fields.pop("chart_analysis", None)
        draft.update(**fields)
        if image:
            draft.attach_chart(image, analysis or "")

    @app.post("/api/trades", status_code=201)
    def create_trade(req: TradeIn):
        draft = TradeDraft()
        try:
            _apply(draft, req)
            return _dump(draft.commit(ledger))
        except JournalError as e:
            raise _to_http(e)

    @app.put("/api/trades/{trade_id}")
    def update_trade(trade_id: str, req: TradeIn):
        try:
            draft = TradeDraft(ledger.get(trade_id))
            _apply(draft, req)
            return _dump(draft.commit(ledger))
        except JournalError as e:
            raise _to_http(e)

    @app.delete("/api/trades/{trade_id}")
    def delete_trade(trade_id: str):
        try:
            ledger.remove(trade_id)
        except JournalError as e:
            raise _to_http(e)
        return {"message": "Trade deleted"}

    @app.post("/api/trades/{trade_id}/exit/preview")
    def preview_exit(trade_id: str, req: ExitPreviewIn):
        draft = ExitDraft(ledger.open_trades())
        try:
            ledger.get(trade_id)
            draft.select(trade_id)
        except JournalError as e:
            raise _to_http(e)
        draft.set_exit_price(req.exit_price)
        return {"preview": draft.preview()}

    @app.post("/api/trades/{trade_id}/exit")
    def exit_trade(trade_id: str, req: ExitIn):
        draft = ExitDraft(ledger.open_trades())
        try:
            ledger.get(trade_id)
            draft.select(trade_id)
            if req.exit_date:
                draft.exit_date = req.exit_date
            draft.set_exit_price(req.exit_price)
            draft.notes = req.notes
            return _dump(draft.commit(ledger))
        except JournalError as e:
            raise _to_http(e)

    @app.get("/api/trades/{trade_id}/feedback")
    def trade_feedback(trade_id: str):
        try:
            trade = ledger.get(trade_id)
        except JournalError as e:
            raise _to_http(e)
        return {"feedback": ai_service.get_trade_feedback(trade)}

    # ──────────────────────────────────────
    # ANALYTICS & PRICES
    # ──────────────────────────────────────

    @app.get("/api/stats")
    def stats():
        return analytics.performance_summary(ledger.trades, poller.prices)

    @app.get("/api/stats/equity-curve")
    def equity_curve():
        return analytics.equity_curve(ledger.trades)

    @app.post("/api/risk-reward")
    def risk_reward(req: RiskRewardIn):
        return {"risk_reward": analytics.risk_reward(
            req.entry_price, req.shares, req.stop_loss, req.take_profit
        )}

    @app.get("/api/prices")
    def prices():
        current = poller.prices
        positions = {
            t.id: analytics.position_unrealized_pnl(t, current) for t in ledger.open_trades()
        }
        return {"prices": current, "fetching": poller.fetching, "unrealized_by_trade": positions}

    @app.post("/api/prices/refresh")
    def refresh_prices():
        applied = poller.refresh_now()
        return {"applied": applied, "prices": poller.prices}

    # ──────────────────────────────────────
    # IMPORT / EXPORT
    # ──────────────────────────────────────

    @app.get("/api/export/csv")
    def export_csv():
        content = csv_service.export_trades_csv(ledger.trades)
        return Response(
            content,
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={csv_service.csv_filename()}"},
        )

    @app.post("/api/import/csv")
    def import_csv(req: CsvImportIn):
        try:
            trades = csv_service.parse_trades_csv(req.content)
            return {"imported": ledger.replace_all(trades)}
        except JournalError as e:
            raise _to_http(e)

    @app.post("/api/sheets/sync")
    def sheets_sync():
        try:
            url = sheets_service.get_sheet_sync(storage).sync_trades_to_sheet(ledger.trades)
        except JournalError as e:
            logger.error("Sheet sync failed: %s", e)
            raise _to_http(e)
        return {"url": url}

    @app.post("/api/sheets/import")
    def sheets_import():
        try:
            trades = sheets_service.get_sheet_sync(storage).fetch_trades_from_sheet()
            return {"imported": ledger.replace_all(trades)}
        except JournalError as e:
            logger.error("Sheet import failed: %s", e)
            raise _to_http(e)

    @app.get("/api/broker/credentials")
    def get_broker_credentials():
        creds = broker_creds.load()
        return {"configured": creds is not None,
                "api_key": creds.api_key if creds else None}

    @app.put("/api/broker/credentials")
    def save_broker_credentials(creds: BrokerCredentials):
        if not creds.api_key.strip() or not creds.api_secret.strip():
            raise HTTPException(status_code=400, detail="Both API key and secret are required")
        broker_creds.save(creds)
        return {"message": "Credentials saved"}

    @app.delete("/api/broker/credentials")
    def clear_broker_credentials():
        broker_creds.clear()
        return {"message": "Credentials cleared"}

    @app.post("/api/broker/import")
    def broker_import():
        creds = broker_creds.load()
        if creds is None:
            raise HTTPException(status_code=400, detail="Broker credentials are not configured")
        try:
            trades = broker_service.import_from_broker(creds)
            return {"imported": ledger.replace_all(trades)}
        except JournalError as e:
            logger.error("Broker import failed: %s", e)
            raise _to_http(e)

    # ──────────────────────────────────────
    # PROFILE & WATCHLIST
    # ──────────────────────────────────────

    @app.get("/api/profile")
    def get_profile():
        return profiles.get().model_dump()

    @app.put("/api/profile")
    def update_profile(req: ProfileIn):
        try:
            saved = ProfileDraft(profiles.get()).set(req.username, req.avatar).commit(profiles)
        except JournalError as e:
            raise _to_http(e)
        return saved.model_dump()

    @app.get("/api/watchlist")
    def get_watchlist():
        return [i.model_dump() for i in watchlist.items]

    @app.post("/api/watchlist", status_code=201)
    def add_to_watchlist(req: WatchlistIn):
        try:
            return watchlist.add(req.ticker).model_dump()
        except JournalError as e:
            raise _to_http(e)

    @app.delete("/api/watchlist/{item_id}")
    def remove_from_watchlist(item_id: str):
        try:
            watchlist.remove(item_id)
        except JournalError as e:
            raise _to_http(e)
        return {"message": "Removed from watchlist"}

    @app.post("/api/watchlist/scan")
    def scan_watchlist():
        tickers = watchlist.tickers()
        if not tickers:
            raise HTTPException(status_code=400, detail="Add tickers to your watchlist to scan them")
        try:
            return [r.model_dump() for r in ai_service.scan_watchlist_tickers(tickers)]
        except JournalError as e:
            logger.error("Watchlist scan failed: %s", e)
            raise _to_http(e)

    # ──────────────────────────────────────
    # AI ASSISTANT
    # ──────────────────────────────────────

    @app.post("/api/ai/chart-analysis")
    def chart_analysis(req: ChartAnalysisIn):
        if req.prompt:
            return {"analysis": ai_service.analyze_chart_image(req.image_base64, req.prompt)}
        return {"analysis": ai_service.analyze_chart_image(req.image_base64)}

    @app.post("/api/ai/pre-trade")
    def pre_trade(req: PreTradeIn):
        analysis = ai_service.get_pre_trade_analysis(
            req.ticker.upper(), req.entry_price, req.stop_loss, req.take_profit,
            req.strategy, req.mindset.value if req.mindset else None,
        )
        return {"analysis": analysis}

    @app.post("/api/ai/chat")
    def chat(req: ChatIn):
        if not req.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        return ai_service.get_market_chat_response(req.history, req.message).model_dump()

    @app.post("/api/ai/strategy-analysis")
    def strategy_analysis(req: StrategyIn):
        return {"analysis": ai_service.get_deep_strategy_analysis(req.strategy)}

    @app.get("/api/ai/news")
    def news():
        tickers = sorted({t.ticker.upper() for t in ledger.trades if t.ticker})
        return [a.model_dump() for a in ai_service.fetch_news_for_tickers(tickers)]

    @app.get("/api/ai/feature-ideas")
    def feature_ideas():
        try:
            return [i.model_dump(by_alias=True) for i in ai_service.get_feature_ideation()]
        except JournalError as e:
            logger.error("Feature ideation failed: %s", e)
            raise _to_http(e)

    # ──────────────────────────────────────
    # TICKERS
    # ──────────────────────────────────────

    @app.get("/api/tickers/search")
    def ticker_search(q: str):
        return [s.model_dump() for s in ai_service.search_ticker_symbols(q)]

    @app.post("/api/tickers/input")
    def ticker_input(req: TickerInputIn):
        suggestions.on_input(req.text)
        return {"query": suggestions.query}

    @app.get("/api/tickers/suggestions")
    def ticker_suggestions():
        return {
            "query": suggestions.query,
            "searching": suggestions.searching,
            "results": [s.model_dump() for s in suggestions.results],
        }

    @app.get("/api/tickers/{ticker}/price")
    def ticker_price(ticker: str):
        return {"ticker": ticker.upper(), "price": ai_service.get_current_price(ticker.upper())}

    return app


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("swingjournal.api.main:create_app", factory=True, host="0.0.0.0", port=8000)
