"""
Webhook Request Model
Transport-neutral view of an incoming provider callback
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from salescaller.domain.exceptions import ValidationError


@dataclass
class WebhookRequest:
    """
    Raw callback as received over HTTP.

    Headers are stored lower-cased. The raw body is kept because every
    signature scheme signs the exact bytes that were sent.
    """
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    content_type: Optional[str] = None

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if self.content_type is None:
            self.content_type = self.headers.get("content-type", "")

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name.lower())
        return value.strip() if value else None

    @property
    def is_form(self) -> bool:
        return "application/x-www-form-urlencoded" in (self.content_type or "")

    def json(self) -> Dict[str, Any]:
        """Parse body as a JSON object, raising ValidationError when it is not one."""
        try:
            data = json.loads(self.body or b"{}")
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError(f"Webhook body is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise ValidationError("Webhook body must be a JSON object")
        return data

    def form(self) -> Dict[str, str]:
        """Parse a form-encoded body; the last value wins for repeated keys."""
        try:
            return dict(parse_qsl(self.body.decode("utf-8"), keep_blank_values=True))
        except UnicodeDecodeError as e:
            raise ValidationError(f"Webhook body is not valid form data: {e}")

    def params(self) -> Dict[str, Any]:
        """Body parsed according to its content type."""
        return self.form() if self.is_form else self.json()
