"""Project request models for Myers Construct.

Inputs to the estimate-synthesis pipeline: the contractor's project
description, an optional blueprint attachment, and the historical bids
used as weighting context.
"""

import base64
import binascii
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from config.errors import InvalidRequest


DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,]*)?),(?P<payload>.*)$", re.DOTALL)

# Margin assumed for a won bid that was saved without one
DEFAULT_HISTORICAL_MARGIN = 20.0


class Attachment(BaseModel):
    """Blueprint or plan attached to a project request."""

    mime_type: str = Field(alias="mimeType", description="Media type, e.g. image/jpeg")
    data: bytes = Field(description="Raw file bytes")

    class Config:
        populate_by_name = True
        frozen = True

    @classmethod
    def from_data_url(cls, value: str, mime_type: Optional[str] = None) -> "Attachment":
        """Build an attachment from a data URL or a bare base64 payload.

        Args:
            value: ``data:<mime>;base64,<payload>`` or just ``<payload>``.
            mime_type: Media type; required when ``value`` is not a data URL.

        Raises:
            InvalidRequest: If the payload is not valid base64 or no media
                type can be determined.
        """
        payload = value or ""
        match = DATA_URL_PATTERN.match(payload)
        if match:
            mime_type = mime_type or match.group("mime")
            payload = match.group("payload")

        if not mime_type:
            raise InvalidRequest("Attachment is missing a media type", fields=["attachment.mimeType"])
        if not payload:
            raise InvalidRequest("Attachment is empty", fields=["attachment.data"])

        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidRequest("Attachment is not valid base64", fields=["attachment.data"])

        return cls(mime_type=mime_type, data=data)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


class ProjectRequest(BaseModel):
    """A contractor's request for an estimate.

    Immutable once handed to the orchestrator.
    """

    scope: str = Field(default="", description="Short project identifier")
    location: str = Field(default="", description="Locale, also used as the price-search region")
    description: str = Field(default="", description="Narrative of the work")
    attachment: Optional[Attachment] = Field(default=None, description="Optional blueprint")

    class Config:
        populate_by_name = True
        frozen = True

    def missing_fields(self) -> List[str]:
        """Names of required fields that are blank."""
        return [
            name
            for name in ("scope", "location", "description")
            if not (getattr(self, name) or "").strip()
        ]

    @classmethod
    def from_payload(cls, project: Dict[str, Any], attachment: Optional[Dict[str, Any]] = None) -> "ProjectRequest":
        """Build a request from the web client's JSON body."""
        if not isinstance(project, dict):
            raise InvalidRequest("Missing project in request", fields=["project"])

        fields = {}
        for name in ("scope", "location", "description"):
            value = project.get(name, "")
            if not isinstance(value, str):
                raise InvalidRequest(f"project.{name} must be a string", fields=[name])
            fields[name] = value

        parsed_attachment = None
        if attachment:
            if not isinstance(attachment, dict):
                raise InvalidRequest("attachment must be an object", fields=["attachment"])
            data = attachment.get("data", "")
            mime_type = attachment.get("mimeType")
            if not isinstance(data, str):
                raise InvalidRequest("attachment.data must be a string", fields=["attachment.data"])
            if mime_type is not None and not isinstance(mime_type, str):
                raise InvalidRequest("attachment.mimeType must be a string", fields=["attachment.mimeType"])
            parsed_attachment = Attachment.from_data_url(data, mime_type=mime_type)

        return cls(attachment=parsed_attachment, **fields)


class HistoricalBid(BaseModel):
    """A previously won bid used to weight a new estimate."""

    name: str = Field(description="Project label")
    status: str = Field(description="Bid outcome; only 'won' bids are used")
    margin: float = Field(description="Margin percentage")

    class Config:
        frozen = True

    @classmethod
    def from_ledger_document(cls, doc: Dict[str, Any]) -> "HistoricalBid":
        margin = doc.get("margins")
        return cls(
            name=str(doc.get("projectSummary") or doc.get("name") or "Untitled project"),
            status=str(doc.get("status") or ""),
            margin=float(margin) if margin is not None else DEFAULT_HISTORICAL_MARGIN,
        )

    def to_prompt_line(self) -> str:
        return f"- Project: {self.name}, Outcome: {self.status}, Margins: {self.margin:g}%"
