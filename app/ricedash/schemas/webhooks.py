from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    outcome: str
