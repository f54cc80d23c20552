"""Action detection - finds actionable intents in generated text."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from dispatch.logging import get_logger

logger = get_logger(name=__name__)


class RiskLevel(StrEnum):
    """How reversible an autonomous action is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionType(StrEnum):
    """Closed set of actions the detector knows how to recognise."""

    PRODUCT_CREATE = "product_create"
    PRODUCT_UPDATE = "product_update"
    PRODUCT_DELETE = "product_delete"
    INVENTORY_UPDATE = "inventory_update"
    INVENTORY_BULK_UPDATE = "inventory_bulk_update"
    ORDER_FULFILL = "order_fulfill"
    ORDER_CANCEL = "order_cancel"
    CUSTOMER_CREATE = "customer_create"
    CUSTOMER_UPDATE = "customer_update"
    CUSTOMER_DELETE = "customer_delete"

    @property
    def resource(self) -> str:
        return self.value.split("_", 1)[0]

    @property
    def verb(self) -> str:
        return self.value.rsplit("_", 1)[1]


@dataclass(frozen=True)
class ActionTemplate:
    """Recognition rule and policy for one action type."""

    type: ActionType
    patterns: tuple[re.Pattern[str], ...]
    risk_level: RiskLevel
    requires_confirmation: bool
    estimated_time: str


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


ACTION_TEMPLATES: list[ActionTemplate] = [
    ActionTemplate(
        ActionType.PRODUCT_CREATE,
        _compile(
            r"create\s+(?:a\s+)?(?:new\s+)?product",
            r"add\s+(?:a\s+)?(?:new\s+)?product",
            r"make\s+(?:a\s+)?(?:new\s+)?product",
        ),
        RiskLevel.HIGH,
        True,  # creation goes through a preview step
        "2-3 minutes",
    ),
    ActionTemplate(
        ActionType.PRODUCT_UPDATE,
        _compile(r"update\s+product", r"modify\s+product", r"change\s+product", r"edit\s+product"),
        RiskLevel.MEDIUM,
        False,
        "1-2 minutes",
    ),
    ActionTemplate(
        ActionType.PRODUCT_DELETE,
        _compile(r"delete\s+product", r"remove\s+product", r"archive\s+product"),
        RiskLevel.HIGH,
        True,
        "30 seconds",
    ),
    ActionTemplate(
        ActionType.INVENTORY_UPDATE,
        _compile(
            r"update\s+inventory",
            r"adjust\s+inventory",
            r"change\s+stock",
            r"set\s+quantity",
            r"restock",
        ),
        RiskLevel.LOW,
        False,
        "1 minute",
    ),
    ActionTemplate(
        ActionType.INVENTORY_BULK_UPDATE,
        _compile(
            r"bulk\s+update\s+inventory",
            r"update\s+all\s+inventory",
            r"mass\s+inventory\s+update",
        ),
        RiskLevel.HIGH,
        True,
        "5-10 minutes",
    ),
    ActionTemplate(
        ActionType.ORDER_FULFILL,
        _compile(r"fulfill\s+order", r"ship\s+order", r"process\s+order", r"complete\s+order"),
        RiskLevel.MEDIUM,
        False,
        "2-3 minutes",
    ),
    ActionTemplate(
        ActionType.ORDER_CANCEL,
        _compile(r"cancel\s+order", r"void\s+order", r"refund\s+order"),
        RiskLevel.HIGH,
        True,
        "1-2 minutes",
    ),
    ActionTemplate(
        ActionType.CUSTOMER_CREATE,
        _compile(r"create\s+customer", r"add\s+customer", r"new\s+customer"),
        RiskLevel.LOW,
        False,
        "1 minute",
    ),
    ActionTemplate(
        ActionType.CUSTOMER_UPDATE,
        _compile(r"update\s+customer", r"modify\s+customer", r"change\s+customer"),
        RiskLevel.LOW,
        False,
        "1 minute",
    ),
    ActionTemplate(
        ActionType.CUSTOMER_DELETE,
        _compile(r"delete\s+customer", r"remove\s+customer"),
        RiskLevel.HIGH,
        True,
        "30 seconds",
    ),
]

PARAMETER_PATTERNS: dict[str, re.Pattern[str]] = {
    "product_id": re.compile(r"product\s+(?:id\s+)?#?(\d+)", re.IGNORECASE),
    "order_id": re.compile(r"order\s+(?:id\s+)?#?(\d+)", re.IGNORECASE),
    "customer_id": re.compile(r"customer\s+(?:id\s+)?#?(\d+)", re.IGNORECASE),
    "quantity": re.compile(r"(?:quantity|stock|amount)\s+(?:to\s+)?(\d+)", re.IGNORECASE),
    "price": re.compile(r"(?:price|cost)\s+(?:to\s+)?\$?(\d+(?:\.\d{2})?)", re.IGNORECASE),
    "title": re.compile(r"(?:title|name|named|called)\s+[\"']([^\"']+)[\"']", re.IGNORECASE),
    "description": re.compile(r"(?:description|desc)\s+[\"']([^\"']+)[\"']", re.IGNORECASE),
}
UNQUOTED_TITLE = re.compile(
    r"(?:product|item)\s+(?:named|called)\s+([^,\n]+?)\s+(?:price|cost|for)\b", re.IGNORECASE
)
UNITS = re.compile(r"(\d+)\s+(?:units?|pieces?|items?)", re.IGNORECASE)
BULK_MARKERS = re.compile(r"\b(?:all|every|bulk|entire)\b", re.IGNORECASE)
HEDGE_MARKERS = re.compile(r"\b(?:maybe|perhaps|might)\b", re.IGNORECASE)
SENTENCE_BREAK = re.compile(r"[.!?](?=\s|$)|\n")

BASE_CONFIDENCE = 0.7
VERB_BONUS = 0.2
PARAMETER_BONUS = 0.05
MAX_PARAMETER_BONUS = 0.2
HEDGE_PENALTY = 0.3
HIGH_VALUE_PRICE = 100.0


@dataclass
class ActionDescriptor:
    """One candidate action found in a single detection pass."""

    id: str
    type: ActionType
    description: str
    risk_level: RiskLevel
    confidence: float
    requires_confirmation: bool
    estimated_time: str
    parameters: dict[str, str] = field(default_factory=dict)
    source_text: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0.0, 1.0], got {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "risk_level": self.risk_level.value,
            "confidence": round(self.confidence, 3),
            "requires_confirmation": self.requires_confirmation,
            "estimated_time": self.estimated_time,
            "parameters": dict(self.parameters),
        }


@dataclass
class DetectionResult:
    has_actions: bool
    actions: list[ActionDescriptor]


def extract_parameters(text: str, action_type: ActionType) -> dict[str, str]:
    """Pull ids, quantities, prices and names out of the text around an action."""
    params: dict[str, str] = {}
    for name, pattern in PARAMETER_PATTERNS.items():
        match = pattern.search(text)
        if match:
            params[name] = match.group(1).strip()

    if "title" not in params:
        match = UNQUOTED_TITLE.search(text)
        if match:
            params["title"] = match.group(1).strip()

    if action_type.resource == "inventory" and "quantity" not in params:
        match = UNITS.search(text)
        if match:
            params["quantity"] = match.group(1)

    return params


def _describe(action_type: ActionType, params: dict[str, str]) -> str:
    if action_type is ActionType.PRODUCT_CREATE:
        return "Create new product" + (f' "{params["title"]}"' if "title" in params else "")
    if action_type is ActionType.PRODUCT_UPDATE:
        return "Update product" + (f" #{params['product_id']}" if "product_id" in params else "")
    if action_type is ActionType.INVENTORY_UPDATE:
        return "Update inventory" + (
            f" to {params['quantity']} units" if "quantity" in params else ""
        )
    if action_type is ActionType.ORDER_FULFILL:
        return "Fulfill order" + (f" #{params['order_id']}" if "order_id" in params else "")
    return f"{action_type.verb.capitalize()} {action_type.resource}"


def _sentence_around(text: str, start: int, end: int) -> str:
    left = 0
    for boundary in SENTENCE_BREAK.finditer(text, 0, start):
        left = boundary.end()
    boundary = SENTENCE_BREAK.search(text, end)
    right = boundary.start() if boundary else len(text)
    return text[left:right]


class ActionDetector:
    """
    Scans generated text for action cues.

    Confidence per detection:
        0.7 base
        + 0.2 when the matched cue contains the action verb
        + 0.05 per extracted parameter (capped at 0.2)
        - 0.3 when the text hedges (maybe / perhaps / might)
    clamped to [0.1, 1.0].
    """

    def __init__(self, templates: list[ActionTemplate] | None = None) -> None:
        self.templates = list(ACTION_TEMPLATES if templates is None else templates)

    def detect(self, text: str, context: dict[str, Any] | None = None) -> DetectionResult:
        context = context or {}
        actions: list[ActionDescriptor] = []
        seen: set[tuple[str, tuple[tuple[str, str], ...]]] = set()

        for template in self.templates:
            for pattern in template.patterns:
                match = pattern.search(text)
                if not match:
                    continue

                sentence = _sentence_around(text, match.start(), match.end())
                params = extract_parameters(sentence, template.type)
                confidence = self._confidence(template.type, match.group(0), text, params)
                for key in ("store_id", "worker_id"):
                    if context.get(key):
                        params[key] = str(context[key])
                if BULK_MARKERS.search(sentence):
                    params["bulk"] = "true"

                key = (template.type.value, tuple(sorted(params.items())))
                if key in seen:
                    continue
                seen.add(key)

                actions.append(
                    ActionDescriptor(
                        id=f"action-{template.type.value}-{uuid.uuid4().hex[:8]}",
                        type=template.type,
                        description=_describe(template.type, params),
                        risk_level=template.risk_level,
                        confidence=confidence,
                        requires_confirmation=self._requires_confirmation(template, params),
                        estimated_time=template.estimated_time,
                        parameters=params,
                        source_text=match.group(0),
                    )
                )

        if actions:
            logger.debug("actions_detected", count=len(actions), types=[a.type.value for a in actions])
        return DetectionResult(has_actions=bool(actions), actions=actions)

    @staticmethod
    def _confidence(
        action_type: ActionType, cue: str, text: str, params: dict[str, str]
    ) -> float:
        confidence = BASE_CONFIDENCE
        if action_type.verb in cue.lower():
            confidence += VERB_BONUS
        confidence += min(len(params) * PARAMETER_BONUS, MAX_PARAMETER_BONUS)
        if HEDGE_MARKERS.search(text):
            confidence -= HEDGE_PENALTY
        return min(max(confidence, 0.1), 1.0)

    @staticmethod
    def _requires_confirmation(template: ActionTemplate, params: dict[str, str]) -> bool:
        if template.requires_confirmation:
            return True
        if params.get("bulk") == "true":
            return True
        price = params.get("price")
        if price is not None and float(price) > HIGH_VALUE_PRICE:
            return True
        return False
