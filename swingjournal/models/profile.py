from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import uuid


class UserProfile(BaseModel):
    username: str = "Trader"
    avatar: str = "👤"


class WatchlistItem(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    ticker: str


class BrokerCredentials(BaseModel):
    # Kept in plaintext in local storage. Not suitable for production use.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_key: str
    api_secret: str
