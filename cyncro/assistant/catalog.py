"""Domain tools available to the assistant.

Each tool is an async closure over a RecordStore, paired with a pydantic
input model. register_catalog_tools() wires all of them into a
ToolDispatcher at startup.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from cyncro.assistant.tools import ToolContext, ToolDispatcher
from cyncro.storage.records import Filter, Order, RecordStore

logger = logging.getLogger(__name__)

Cadence = Literal["daily", "weekly", "monthly", "quarterly", "yearly"]
SubscriptionStatus = Literal["active", "paused", "cancelled", "expired"]
CaseStatus = Literal["draft", "sent", "waiting", "escalated", "resolved"]
CaseType = Literal["return", "warranty", "complaint", "cancellation"]
Library = Literal["receipts", "warranties", "manuals", "insurance", "contracts"]
Room = Literal["kitchen", "bedroom", "living_room", "bathroom", "garage", "office", "outdoor", "other"]

# Multipliers from a billing period to one month.
MONTHLY_FACTOR: dict[str, float] = {
    "daily": 30.0,
    "weekly": 4.33,
    "monthly": 1.0,
    "quarterly": 1 / 3,
    "yearly": 1 / 12,
}


def monthly_cost(price: float | None, cadence: str | None) -> float:
    if price is None:
        return 0.0
    return price * MONTHLY_FACTOR.get(cadence or "", 0.0)


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_start(period: str, today: date) -> date | None:
    if period == "week":
        return today - timedelta(days=7)
    if period == "month":
        return today.replace(day=1)
    if period == "quarter":
        return date(today.year, (today.month - 1) // 3 * 3 + 1, 1)
    if period == "year":
        return date(today.year, 1, 1)
    return None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class _Input(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ListPurchasesInput(_Input):
    search: str | None = Field(None, description="Search by item name or merchant")
    needs_review: bool | None = Field(None, description="Filter to items needing review")
    date_from: date | None = Field(None, description="Start date (YYYY-MM-DD)")
    date_to: date | None = Field(None, description="End date (YYYY-MM-DD)")
    category: str | None = Field(None, description="Filter by category")
    limit: int = Field(20, ge=1, le=100, description="Max results (default 20)")


class RecordIdInput(_Input):
    id: str = Field(description="Record ID")


class CreatePurchaseInput(_Input):
    item_name: str = Field(description="Name of the item purchased")
    purchase_date: date = Field(description="Date of purchase (YYYY-MM-DD)")
    merchant: str | None = Field(None, description="Store/merchant name")
    price: float | None = Field(None, ge=0, description="Price paid")
    warranty_months: int = Field(0, ge=0, description="Warranty duration in months")
    category: str | None = Field(None, description="Category (e.g., electronics, clothing)")
    notes: str | None = Field(None, description="Additional notes")


class UpdatePurchaseInput(_Input):
    id: str = Field(description="Purchase ID to update")
    item_name: str | None = Field(None, description="New item name")
    merchant: str | None = Field(None, description="New merchant name")
    price: float | None = Field(None, ge=0, description="New price")
    needs_review: bool | None = Field(None, description="Set review status")
    notes: str | None = Field(None, description="New notes")
    category: str | None = Field(None, description="New category")


class ListSubscriptionsInput(_Input):
    status: SubscriptionStatus | None = Field(None, description="Filter by status")
    search: str | None = Field(None, description="Search by merchant or plan name")
    upcoming_days: int | None = Field(None, ge=0, description="Filter to subscriptions charging within N days")


class CreateSubscriptionInput(_Input):
    merchant: str = Field(description="Service name (e.g., Netflix, Spotify)")
    price: float = Field(ge=0, description="Price per billing period")
    cadence: Cadence = Field(description="Billing frequency")
    plan_name: str | None = Field(None, description="Plan name (e.g., Premium, Family)")
    next_charge_date: date | None = Field(None, description="Next charge date (YYYY-MM-DD)")
    cancel_url: str | None = Field(None, description="URL to cancel the subscription")
    category: str | None = Field(None, description="Category (e.g., streaming, software)")


class CancelKitInput(_Input):
    subscription_id: str = Field(description="Subscription ID")


class ListCasesInput(_Input):
    status: CaseStatus | None = Field(None, description="Filter by status")
    case_type: CaseType | None = Field(None, description="Filter by case type")


class CreateCaseInput(_Input):
    case_type: CaseType = Field(description="Type of case")
    subject: str = Field(description="Case subject/title")
    merchant: str = Field(description="Merchant name")
    description: str | None = Field(None, description="Detailed description of the issue")
    purchase_id: str | None = Field(None, description="Link to existing purchase (optional)")
    merchant_email: str | None = Field(None, description="Merchant contact email")


class CaseMessageInput(_Input):
    case_id: str = Field(description="Case ID")
    message_type: Literal["initial", "follow_up", "escalation"] = Field(
        "initial", description="Type of message to generate"
    )
    tone: Literal["friendly", "professional", "firm", "concise"] = Field(
        "professional", description="Tone of the message"
    )


class ListVaultItemsInput(_Input):
    library: Library | None = Field(None, description="Filter by library")
    room: Room | None = Field(None, description="Filter by room (for insurance)")
    expiring: bool = Field(False, description="Filter to expiring items (next 30 days)")


class SpendingAnalyticsInput(_Input):
    period: Literal["week", "month", "quarter", "year", "all"] = Field(
        "month", description="Time period for analytics"
    )
    group_by: Literal["merchant", "category", "month"] = Field(
        "category", description="How to group the results"
    )


class AttachDocumentInput(_Input):
    storage_path: str = Field(description="storage_path of an uploaded file, as listed with the user's message")
    target: Literal["purchase", "case", "vault"] = Field(description="Where to attach the file")
    target_id: str | None = Field(None, description="Purchase or case ID (required unless target is vault)")
    library: Library = Field("receipts", description="Vault library (target=vault only)")
    title: str | None = Field(None, description="Title for the vault item (target=vault only)")


# ---------------------------------------------------------------------------
# Tool closures
# ---------------------------------------------------------------------------


def create_catalog_tools(
    records: RecordStore,
    today: Callable[[], date] | None = None,
) -> dict[str, Any]:
    """Create tool closures with the record store captured.

    ``today`` is injectable so date-relative filters are testable.
    """
    today = today or (lambda: datetime.now(UTC).date())

    # -- purchases -----------------------------------------------------------

    async def list_purchases(params: ListPurchasesInput, ctx: ToolContext) -> dict[str, Any]:
        filters: list[Filter] = []
        if params.needs_review is not None:
            filters.append(Filter("needs_review", "eq", params.needs_review))
        if params.date_from:
            filters.append(Filter("purchase_date", "gte", params.date_from.isoformat()))
        if params.date_to:
            filters.append(Filter("purchase_date", "lte", params.date_to.isoformat()))
        if params.category:
            filters.append(Filter("category", "eq", params.category))
        any_of = []
        if params.search:
            any_of = [Filter("item_name", "ilike", params.search), Filter("merchant", "ilike", params.search)]

        result = await records.select(
            "purchases", ctx.user_id,
            filters=filters, any_of=any_of,
            order=Order("purchase_date", descending=True),
            limit=params.limit,
        )
        return {"purchases": result.rows, "total": result.count}

    async def get_purchase(params: RecordIdInput, ctx: ToolContext) -> dict[str, Any]:
        purchase = await records.get("purchases", ctx.user_id, params.id, columns="*, documents(*)")
        if purchase is None:
            raise LookupError(f"Purchase not found: {params.id}")
        return purchase

    async def create_purchase(params: CreatePurchaseInput, ctx: ToolContext) -> dict[str, Any]:
        values: dict[str, Any] = {
            "item_name": params.item_name,
            "merchant": params.merchant,
            "purchase_date": params.purchase_date.isoformat(),
            "price": params.price,
            "warranty_months": params.warranty_months,
            "category": params.category,
            "notes": params.notes,
            "source": "manual",
            "auto_detected": False,
            "needs_review": False,
        }
        if params.warranty_months:
            values["warranty_expires_at"] = add_months(params.purchase_date, params.warranty_months).isoformat()
        return await records.insert("purchases", ctx.user_id, values)

    async def update_purchase(params: UpdatePurchaseInput, ctx: ToolContext) -> dict[str, Any]:
        updates = params.model_dump(exclude_unset=True, exclude={"id"})
        updates["updated_at"] = _now_iso()
        purchase = await records.update("purchases", ctx.user_id, params.id, updates)
        if purchase is None:
            raise LookupError(f"Purchase not found: {params.id}")
        return purchase

    async def delete_purchase(params: RecordIdInput, ctx: ToolContext) -> dict[str, Any]:
        if not await records.delete("purchases", ctx.user_id, params.id):
            raise LookupError(f"Purchase not found: {params.id}")
        return {"success": True, "message": "Purchase deleted successfully"}

    # -- subscriptions -------------------------------------------------------

    async def list_subscriptions(params: ListSubscriptionsInput, ctx: ToolContext) -> dict[str, Any]:
        filters: list[Filter] = []
        if params.status:
            filters.append(Filter("status", "eq", params.status))
        if params.upcoming_days is not None:
            horizon = today() + timedelta(days=params.upcoming_days)
            filters.append(Filter("next_charge_date", "lte", horizon.isoformat()))
        any_of = []
        if params.search:
            any_of = [Filter("merchant", "ilike", params.search), Filter("plan_name", "ilike", params.search)]

        result = await records.select(
            "subscriptions", ctx.user_id,
            filters=filters, any_of=any_of,
            order=Order("next_charge_date"),
        )
        total = sum(
            monthly_cost(sub.get("price"), sub.get("cadence"))
            for sub in result.rows
            if sub.get("status") == "active"
        )
        return {"subscriptions": result.rows, "total_monthly_cost": round(total, 2)}

    async def create_subscription(params: CreateSubscriptionInput, ctx: ToolContext) -> dict[str, Any]:
        return await records.insert("subscriptions", ctx.user_id, {
            "merchant": params.merchant,
            "plan_name": params.plan_name,
            "price": params.price,
            "currency": "NOK",
            "cadence": params.cadence,
            "next_charge_date": params.next_charge_date.isoformat() if params.next_charge_date else None,
            "cancel_url": params.cancel_url,
            "category": params.category,
            "status": "active",
            "renewal_confidence": "estimated",
            "source": "manual",
            "auto_detected": False,
            "needs_review": False,
        })

    async def generate_cancel_kit(params: CancelKitInput, ctx: ToolContext) -> dict[str, Any]:
        # Generation happens behind the redirect.
        return {"redirect_url": f"/api/subscriptions/{params.subscription_id}/cancel-kit"}

    async def delete_subscription(params: RecordIdInput, ctx: ToolContext) -> dict[str, Any]:
        if not await records.delete("subscriptions", ctx.user_id, params.id):
            raise LookupError(f"Subscription not found: {params.id}")
        return {"success": True, "message": "Subscription deleted successfully"}

    # -- cases ---------------------------------------------------------------

    async def list_cases(params: ListCasesInput, ctx: ToolContext) -> dict[str, Any]:
        filters: list[Filter] = []
        if params.status:
            filters.append(Filter("status", "eq", params.status))
        if params.case_type:
            filters.append(Filter("case_type", "eq", params.case_type))
        result = await records.select(
            "cases", ctx.user_id,
            columns="*, purchase:purchases(item_name, merchant)",
            filters=filters,
            order=Order("created_at", descending=True),
        )
        return {"cases": result.rows, "total": result.count}

    async def create_case(params: CreateCaseInput, ctx: ToolContext) -> dict[str, Any]:
        case = await records.insert("cases", ctx.user_id, {
            "case_type": params.case_type,
            "subject": params.subject,
            "description": params.description,
            "merchant": params.merchant,
            "merchant_email": params.merchant_email,
            "purchase_id": params.purchase_id,
            "status": "draft",
            "auto_follow_up": True,
        })
        await records.insert("case_events", ctx.user_id, {
            "case_id": case["id"],
            "event_type": "created",
            "content": f"Case created: {params.subject}",
        })
        return case

    async def generate_case_message(params: CaseMessageInput, ctx: ToolContext) -> dict[str, Any]:
        return {
            "redirect_url": f"/api/cases/{params.case_id}/generate-message",
            "params": {"message_type": params.message_type, "tone": params.tone},
        }

    # -- vault & analytics ---------------------------------------------------

    async def list_vault_items(params: ListVaultItemsInput, ctx: ToolContext) -> dict[str, Any]:
        filters: list[Filter] = []
        if params.library:
            filters.append(Filter("library", "eq", params.library))
        if params.room:
            filters.append(Filter("room", "eq", params.room))
        if params.expiring:
            horizon = today() + timedelta(days=30)
            filters.append(Filter("expires_at", "not_null"))
            filters.append(Filter("expires_at", "lte", horizon.isoformat()))
        result = await records.select(
            "vault_items", ctx.user_id,
            filters=filters,
            order=Order("created_at", descending=True),
        )
        return {"items": result.rows, "total": result.count}

    async def get_spending_analytics(params: SpendingAnalyticsInput, ctx: ToolContext) -> dict[str, Any]:
        filters = [Filter("price", "not_null")]
        start = period_start(params.period, today())
        if start is not None:
            filters.append(Filter("purchase_date", "gte", start.isoformat()))
        purchases = await records.select(
            "purchases", ctx.user_id,
            columns="price, category, merchant, purchase_date",
            filters=filters,
        )
        subscriptions = await records.select(
            "subscriptions", ctx.user_id,
            columns="price, cadence",
            filters=[Filter("status", "eq", "active")],
        )

        groups: dict[str, dict[str, float]] = {}
        for purchase in purchases.rows:
            if params.group_by == "merchant":
                key = purchase.get("merchant") or "Unknown"
            elif params.group_by == "month":
                key = (purchase.get("purchase_date") or "")[:7] or "Unknown"
            else:
                key = purchase.get("category") or "Uncategorized"
            group = groups.setdefault(key, {"amount": 0.0, "count": 0})
            group["amount"] += purchase.get("price") or 0
            group["count"] += 1

        breakdown = sorted(
            (
                {"label": label, "amount": round(g["amount"], 2), "count": int(g["count"])}
                for label, g in groups.items()
            ),
            key=lambda item: item["amount"],
            reverse=True,
        )
        return {
            "total_spent": round(sum(p.get("price") or 0 for p in purchases.rows), 2),
            "purchase_count": len(purchases.rows),
            "subscription_monthly_cost": round(
                sum(monthly_cost(s.get("price"), s.get("cadence")) for s in subscriptions.rows), 2
            ),
            "breakdown": breakdown[:10],
            "period": params.period,
        }

    # -- documents -----------------------------------------------------------

    async def attach_document(params: AttachDocumentInput, ctx: ToolContext) -> dict[str, Any]:
        if not params.storage_path.startswith(f"{ctx.user_id}/"):
            raise PermissionError("storage_path does not belong to this user")

        uploaded = next((f for f in ctx.uploaded_files if f.storage_path == params.storage_path), None)
        if uploaded is not None:
            file_meta = uploaded.model_dump(exclude={"storage_path"})
        else:
            # Uploaded in an earlier turn; recover the name from the path.
            base = params.storage_path.rsplit("/", 1)[-1]
            file_meta = {"file_name": base.split("_", 1)[-1], "file_type": None, "file_size": None}

        if params.target == "vault":
            item = await records.insert("vault_items", ctx.user_id, {
                "library": params.library,
                "title": params.title or file_meta["file_name"],
                "storage_path": params.storage_path,
                "purchase_id": params.target_id,
                **file_meta,
            })
            return {"attached_to": "vault", "vault_item": item}

        if not params.target_id:
            raise ValueError(f"target_id is required to attach to a {params.target}")

        if params.target == "purchase":
            if await records.get("purchases", ctx.user_id, params.target_id) is None:
                raise LookupError(f"Purchase not found: {params.target_id}")
            document = await records.insert("documents", ctx.user_id, {
                "purchase_id": params.target_id,
                "storage_path": params.storage_path,
                **file_meta,
            })
            return {"attached_to": "purchase", "document": document}

        if await records.get("cases", ctx.user_id, params.target_id) is None:
            raise LookupError(f"Case not found: {params.target_id}")
        event = await records.insert("case_events", ctx.user_id, {
            "case_id": params.target_id,
            "event_type": "document_attached",
            "content": f"Document attached: {file_meta['file_name']}",
            "storage_path": params.storage_path,
        })
        return {"attached_to": "case", "case_event": event}

    return {
        "list_purchases": list_purchases,
        "get_purchase": get_purchase,
        "create_purchase": create_purchase,
        "update_purchase": update_purchase,
        "delete_purchase": delete_purchase,
        "list_subscriptions": list_subscriptions,
        "create_subscription": create_subscription,
        "generate_cancel_kit": generate_cancel_kit,
        "delete_subscription": delete_subscription,
        "list_cases": list_cases,
        "create_case": create_case,
        "generate_case_message": generate_case_message,
        "list_vault_items": list_vault_items,
        "get_spending_analytics": get_spending_analytics,
        "attach_document": attach_document,
    }


_CATALOG: list[tuple[str, type[BaseModel], str]] = [
    ("list_purchases", ListPurchasesInput,
     "List user purchases with optional filters. Use to find purchases, calculate spending, or get overview."),
    ("get_purchase", RecordIdInput, "Get details of a specific purchase by ID"),
    ("create_purchase", CreatePurchaseInput,
     "Create a new purchase record. Use when user wants to add a purchase."),
    ("update_purchase", UpdatePurchaseInput,
     "Update an existing purchase. Use to mark as verified, update details, etc."),
    ("delete_purchase", RecordIdInput,
     "Delete a purchase. Only call this if the user explicitly confirms deletion."),
    ("list_subscriptions", ListSubscriptionsInput,
     "List user subscriptions. Calculate monthly costs, find upcoming charges."),
    ("create_subscription", CreateSubscriptionInput, "Add a new subscription"),
    ("generate_cancel_kit", CancelKitInput, "Generate cancellation instructions for a subscription"),
    ("delete_subscription", RecordIdInput,
     "Delete a subscription from tracking. Only call this if the user explicitly confirms deletion."),
    ("list_cases", ListCasesInput, "List user cases (returns, warranties, complaints)"),
    ("create_case", CreateCaseInput, "Create a new case for a return, warranty claim, or complaint"),
    ("generate_case_message", CaseMessageInput,
     "Generate a message for a case (initial, follow-up, or escalation)"),
    ("list_vault_items", ListVaultItemsInput, "List documents in the vault"),
    ("get_spending_analytics", SpendingAnalyticsInput,
     "Get spending analytics and insights. Use for questions about spending, costs, trends."),
    ("attach_document", AttachDocumentInput,
     "Attach a file the user uploaded (by storage_path) to a purchase, a case, or a vault library."),
]


def register_catalog_tools(
    dispatcher: ToolDispatcher,
    records: RecordStore,
    today: Callable[[], date] | None = None,
) -> None:
    """Register every catalog tool with the dispatcher."""
    closures = create_catalog_tools(records, today=today)
    for name, input_model, description in _CATALOG:
        dispatcher.register(name, closures[name], input_model, description)
    logger.debug("Registered %d catalog tools", len(_CATALOG))
