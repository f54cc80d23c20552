"""
Request Taxonomy: Pattern-Weighted Request Classification

Maps a free-text request (plus the MIME types of any attachments) to a
request type, the capabilities a worker needs to handle it, and a confidence.

Scoring per pattern:
    raw   = keywords * 1.0 + phrases * 2.0 + attachment matches * 1.5
    score = raw / (len(keywords) + len(phrases)) * pattern.confidence

The best-scoring pattern wins. Below the floor the request is treated as a
``general_inquiry`` with a fixed confidence and no capability requirement.
"""

import re
from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Classification, CollaborationType

KEYWORD_WEIGHT = 1.0
PHRASE_WEIGHT = 2.0
ATTACHMENT_WEIGHT = 1.5

CLASSIFICATION_FLOOR = 0.3
FALLBACK_CONFIDENCE = 0.5
GENERAL_INQUIRY = "general_inquiry"


@dataclass(frozen=True)
class RequestPattern:
    """One row of the classification table."""

    type: str
    keywords: Tuple[str, ...]
    phrases: Tuple[str, ...]
    confidence: float
    required_capabilities: Tuple[str, ...]
    attachment_types: Tuple[str, ...] = ()
    suggested_actions: Tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.keywords and not self.phrases:
            raise ValueError(f"pattern {self.type!r} needs at least one keyword or phrase")
        if not 0.0 < self.confidence <= 1.0:
            raise ValueError(f"confidence must be in (0.0, 1.0], got {self.confidence}")


REQUEST_PATTERNS: List[RequestPattern] = [
    RequestPattern(
        type="product_creation",
        keywords=(
            "create", "add", "new", "product", "listing", "upload", "generate",
            "turn", "make", "publish", "store",
        ),
        phrases=(
            "create product", "add product", "new listing", "product from image",
            "turn this into a product", "turn into a product", "make this a product",
            "upload to store", "add to store", "publish to store", "create listing",
        ),
        attachment_types=("image/*",),
        confidence=0.9,
        required_capabilities=("product_creation",),
        suggested_actions=(
            "Upload product images for analysis",
            "Generate product title and description",
            "Set competitive pricing",
            "Create product variants if needed",
        ),
    ),
    RequestPattern(
        type="product_management",
        keywords=("edit", "update", "modify", "change", "product", "listing", "description", "price"),
        phrases=("edit product", "update listing", "change price", "modify description"),
        confidence=0.85,
        required_capabilities=("shopify_management",),
        suggested_actions=(
            "Review current product performance",
            "Update product descriptions and images",
            "Adjust pricing based on market trends",
        ),
    ),
    RequestPattern(
        type="inventory_management",
        keywords=("inventory", "stock", "quantity", "reorder", "low stock", "out of stock"),
        phrases=("check inventory", "stock levels", "reorder point", "inventory alert"),
        confidence=0.8,
        required_capabilities=("inventory_management",),
        suggested_actions=(
            "Set up inventory alerts and reorder points",
            "Analyze inventory turnover rates",
            "Plan for seasonal demand changes",
        ),
    ),
    RequestPattern(
        type="order_processing",
        keywords=("order", "fulfillment", "shipping", "delivery", "tracking", "refund", "return"),
        phrases=("process order", "fulfill order", "shipping status", "track order"),
        confidence=0.85,
        required_capabilities=("order_processing",),
        suggested_actions=(
            "Update order fulfillment status",
            "Generate shipping labels and tracking",
            "Handle returns and exchanges",
        ),
    ),
    RequestPattern(
        type="customer_service",
        keywords=("customer", "support", "inquiry", "complaint", "review", "feedback"),
        phrases=("customer inquiry", "support ticket", "customer complaint", "review response"),
        confidence=0.8,
        required_capabilities=("customer_service",),
        suggested_actions=(
            "Respond to customer inquiries promptly",
            "Resolve customer complaints",
            "Create customer satisfaction surveys",
        ),
    ),
    RequestPattern(
        type="analytics_reporting",
        keywords=("analytics", "report", "sales", "performance", "metrics", "dashboard", "stats"),
        phrases=("sales report", "performance metrics", "analytics dashboard", "conversion rate"),
        attachment_types=("text/csv", "application/vnd.ms-excel"),
        confidence=0.75,
        required_capabilities=("reporting",),
        suggested_actions=(
            "Generate sales performance reports",
            "Analyze conversion rates and traffic",
            "Identify growth opportunities",
        ),
    ),
    RequestPattern(
        type="marketing_optimization",
        keywords=("marketing", "seo", "promotion", "campaign", "social", "advertising", "optimize"),
        phrases=("marketing campaign", "seo optimization", "social media", "ad campaign"),
        confidence=0.7,
        required_capabilities=("marketing_automation",),
        suggested_actions=(
            "Optimize product listings for SEO",
            "Create social media marketing campaigns",
            "Set up email marketing automation",
        ),
    ),
    RequestPattern(
        type="store_configuration",
        keywords=("settings", "configuration", "theme", "payment", "shipping", "taxes", "setup"),
        phrases=("store settings", "payment setup", "shipping configuration", "tax settings"),
        confidence=0.8,
        required_capabilities=("store_management",),
        suggested_actions=(
            "Review store settings",
            "Verify payment and shipping configuration",
        ),
    ),
    RequestPattern(
        type="financial_analysis",
        keywords=("revenue", "profit", "cost", "financial", "accounting", "tax", "expense"),
        phrases=("revenue analysis", "profit margins", "financial report", "cost analysis"),
        attachment_types=("text/csv", "application/pdf"),
        confidence=0.75,
        required_capabilities=("financial_analysis",),
        suggested_actions=(
            "Analyze revenue and profit margins",
            "Review cost structure",
            "Forecast cash flow",
        ),
    ),
]

GENERAL_SUGGESTIONS = ["Provide general assistance", "Ask clarifying questions"]


def _contains_term(text: str, term: str) -> bool:
    """Whole-word, case-insensitive containment. ``text`` must already be lowercased."""
    return re.search(r"(?<!\w)" + re.escape(term.lower()) + r"(?!\w)", text) is not None


def score_pattern(
    pattern: RequestPattern,
    message: str,
    attachment_types: Sequence[str] = (),
) -> Tuple[float, List[str]]:
    """Score one pattern against a message. Returns (score, matched terms)."""
    text = message.lower()
    raw = 0.0
    matched: List[str] = []

    for keyword in pattern.keywords:
        if _contains_term(text, keyword):
            raw += KEYWORD_WEIGHT
            matched.append(keyword)

    for phrase in pattern.phrases:
        if _contains_term(text, phrase):
            raw += PHRASE_WEIGHT
            matched.append(phrase)

    for mime in attachment_types:
        for predicate in pattern.attachment_types:
            if fnmatch(mime.lower(), predicate):
                raw += ATTACHMENT_WEIGHT
                matched.append(mime)

    if raw == 0.0:
        return 0.0, matched
    return raw / (len(pattern.keywords) + len(pattern.phrases)) * pattern.confidence, matched


class RequestClassifier:
    """Classifies requests against a static pattern table."""

    def __init__(
        self,
        patterns: Optional[Iterable[RequestPattern]] = None,
        floor: float = CLASSIFICATION_FLOOR,
        fallback_confidence: float = FALLBACK_CONFIDENCE,
    ) -> None:
        self.patterns = list(REQUEST_PATTERNS if patterns is None else patterns)
        self.floor = floor
        self.fallback_confidence = fallback_confidence

    def classify(
        self,
        message: str,
        attachment_types: Optional[Sequence[str]] = None,
    ) -> Classification:
        """
        Classify a request.

        Args:
            message: Free-text request
            attachment_types: MIME types of attached files, e.g. ``["image/png"]``

        Returns:
            Classification with type, required capabilities and confidence.
            Ties between patterns go to the earlier row in the table.
        """
        attachments = list(attachment_types or [])
        best: Optional[RequestPattern] = None
        best_score = 0.0
        best_terms: List[str] = []

        for pattern in self.patterns:
            score, terms = score_pattern(pattern, message or "", attachments)
            if score > best_score:
                best, best_score, best_terms = pattern, score, terms

        if best is None or best_score < self.floor:
            return Classification(
                type=GENERAL_INQUIRY,
                required_capabilities=[],
                confidence=self.fallback_confidence,
                suggested_actions=list(GENERAL_SUGGESTIONS),
                matched_terms=best_terms,
            )

        return Classification(
            type=best.type,
            required_capabilities=list(best.required_capabilities),
            confidence=best_score,
            suggested_actions=list(best.suggested_actions),
            matched_terms=best_terms,
        )


COLLABORATION_HINTS: Dict[CollaborationType, Tuple[str, ...]] = {
    CollaborationType.CONSULTATION: ("analyze", "research"),
    CollaborationType.DATA_SHARING: ("share", "sync"),
    CollaborationType.JOINT_TASK: ("joint", "collaborate"),
}


def infer_collaboration_type(task_type: Optional[str]) -> CollaborationType:
    """Derive a collaboration type from a task-type hint. Defaults to delegation."""
    if task_type:
        hint = task_type.lower()
        for collab_type, markers in COLLABORATION_HINTS.items():
            if any(marker in hint for marker in markers):
                return collab_type
    return CollaborationType.DELEGATION
