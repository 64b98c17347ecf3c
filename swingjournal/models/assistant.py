from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Literal, Optional


class Citation(BaseModel):
    uri: str
    title: str


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    text: str
    citations: Optional[list[Citation]] = None


class TickerSuggestion(BaseModel):
    name: str
    ticker: str


class NewsAlert(BaseModel):
    ticker: str
    headline: str
    uri: str
    timestamp: int          # epoch ms when the alert was fetched


class WatchlistScanResult(BaseModel):
    ticker: str
    analysis: str


class FeatureIdea(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    title: str
    description: str
    model_to_use: str = ""
