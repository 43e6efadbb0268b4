"""Alert schemas: rule conditions, channel configs and read models."""
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class RuleCondition(BaseModel):
    """Condition payload stored on an alert rule.

    ``duration`` is reserved; no evaluator reads it yet.
    """

    threshold: int = 0
    duration: int = 0

    model_config = ConfigDict(extra="ignore")


class TelegramConfig(BaseModel):
    bot_token: str = Field(min_length=1)
    chat_id: str = Field(min_length=1)

    @field_validator("chat_id", mode="before")
    @classmethod
    def _chat_id_as_str(cls, value: object) -> object:
        # Numeric chat ids are common in hand-written configs.
        if isinstance(value, int):
            return str(value)
        return value


class WebhookConfig(BaseModel):
    url: str = Field(min_length=1)
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def _normalise_method(cls, value: str) -> str:
        return value.strip().upper() or "POST"


class SMTPConfig(BaseModel):
    host: str = Field(min_length=1)
    port: int = 25
    username: str = ""
    password: str = ""
    from_address: str = Field(validation_alias=AliasChoices("from", "from_address"))
    to: str
    use_tls: bool = False

    @property
    def recipients(self) -> list[str]:
        return [address.strip() for address in self.to.split(",") if address.strip()]


class AlertRuleRead(BaseModel):
    id: int
    name: str
    type: str
    condition: str
    enabled: bool
    cooldown_minutes: int
    channel_ids: str
    last_alert_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class NotifyChannelRead(BaseModel):
    id: int
    name: str
    type: str
    enabled: bool

    model_config = ConfigDict(from_attributes=True)


class AlertLogRead(BaseModel):
    id: int
    rule_id: int | None
    rule_name: str
    type: str
    message: str
    target_type: str
    target_id: int
    target_name: str
    channel_id: int | None
    status: str
    error: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AlertLogPage(BaseModel):
    items: list[AlertLogRead]
    total: int


class ChannelTestResult(BaseModel):
    channel_id: int
    status: str
