"""
Line validation and construction shared by document creation and revision.

Raw request lines are parsed into immutable LineInput values first, then
resolved against the tenant's data (items for MTF, upstream lines for the
downstream tiers) and checked against the consumption ledger. Nothing is
written here; callers attach the returned line objects to a header.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from procurement.core.exceptions import NotFoundError, ValidationError
from procurement.models import db
from procurement.models.documents import DocumentLine, WorkflowStatus
from procurement.models.master_data import Item
from procurement.services.consumption_ledger import TIERS, assert_within_backlog
from procurement.services.helpers.scoped_queries import get_scoped
from procurement.utils.helpers import parse_decimal


# quantity and unit_price columns are Numeric(18, 4)
SCALE = 4
MAX_INTEGER_DIGITS = 14


@dataclass(frozen=True)
class LineInput:
    quantity: Decimal
    unit_price: Decimal | None = None
    material_description: str | None = None
    item_id: int | None = None
    source_line_id: int | None = None


def _optional_int(raw: dict, key: str, errors: dict, prefix: str) -> int | None:
    value = raw.get(key)
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        errors[f"{prefix}.{key}"] = "must be an integer"
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        errors[f"{prefix}.{key}"] = "must be an integer"
        return None


def _check_column_fit(value: Decimal, field: str, errors: dict) -> None:
    if value.normalize().as_tuple().exponent < -SCALE:
        errors[field] = f"must have at most {SCALE} decimal places"
    elif value.adjusted() >= MAX_INTEGER_DIGITS:
        errors[field] = f"must be below 10^{MAX_INTEGER_DIGITS}"


def parse_line_inputs(raw_lines) -> list[LineInput]:
    """Validate the shape and numeric rules of request lines.

    Rules: at least one line; quantity > 0; unit_price >= 0 when given.
    Both must fit the stored precision: values with more than four decimal
    places are refused rather than rounded.

    Raises:
        ValidationError: with per-field ``details`` (``lines[0].quantity`` ...).
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("At least one line is required", details={"lines": "required"})

    errors: dict[str, str] = {}
    parsed: list[LineInput] = []
    for idx, raw in enumerate(raw_lines):
        prefix = f"lines[{idx}]"
        if not isinstance(raw, dict):
            errors[prefix] = "must be an object"
            continue

        quantity = None
        try:
            quantity = parse_decimal(raw.get("quantity"))
            if quantity <= 0:
                errors[f"{prefix}.quantity"] = "must be greater than 0"
            else:
                _check_column_fit(quantity, f"{prefix}.quantity", errors)
        except ValueError as exc:
            errors[f"{prefix}.quantity"] = str(exc)

        unit_price = None
        if raw.get("unit_price") not in (None, ""):
            try:
                unit_price = parse_decimal(raw["unit_price"])
                if unit_price < 0:
                    errors[f"{prefix}.unit_price"] = "must not be negative"
                else:
                    _check_column_fit(unit_price, f"{prefix}.unit_price", errors)
            except ValueError as exc:
                errors[f"{prefix}.unit_price"] = str(exc)

        description = raw.get("material_description")
        if description is not None and not isinstance(description, str):
            errors[f"{prefix}.material_description"] = "must be a string"
            description = None

        item_id = _optional_int(raw, "item_id", errors, prefix)
        source_line_id = _optional_int(raw, "source_line_id", errors, prefix)

        if quantity is not None:
            parsed.append(LineInput(
                quantity=quantity,
                unit_price=unit_price,
                material_description=(description or "").strip() or None,
                item_id=item_id,
                source_line_id=source_line_id,
            ))

    if errors:
        raise ValidationError("Invalid document lines", details=errors)
    return parsed


def _build_mtf_lines(tier, tenant_id: int, inputs: list[LineInput]) -> list:
    missing = {f"lines[{i}].item_id": "required" for i, li in enumerate(inputs) if li.item_id is None}
    if missing:
        raise ValidationError("MTF lines must reference an item", details=missing)

    lines = []
    for li in inputs:
        item = get_scoped(Item, li.item_id, tenant_id=tenant_id, resource="Item")
        lines.append(tier.line_model(
            item_id=item.id,
            quantity=li.quantity,
            unit_price=li.unit_price if li.unit_price is not None else (item.budget_unit_price or Decimal("0")),
            material_description=li.material_description or item.material_description or item.material_name,
        ))
    return lines


def _load_source_lines(source_tier, tenant_id: int, ids: list[int]) -> dict:
    """Lock the referenced upstream lines of this tenant, keyed by id."""
    line, header = source_tier.line_model, source_tier.header_model
    stmt = (
        select(line)
        .join(header, line.header_id == header.id)
        .where(line.id.in_(ids), header.tenant_id == tenant_id)
        .with_for_update()
    )
    return {src.id: src for src in db.session.execute(stmt).scalars()}


def _build_downstream_lines(
    tier,
    tenant_id: int,
    project_id: int,
    discipline_id: int,
    inputs: list[LineInput],
    exclude_header_id: int | None,
) -> list:
    source_code = tier.source_code
    missing = {
        f"lines[{i}].source_line_id": "required"
        for i, li in enumerate(inputs) if li.source_line_id is None
    }
    if missing:
        raise ValidationError(f"{tier.code} lines must reference a {source_code} line", details=missing)

    sources = _load_source_lines(TIERS[source_code], tenant_id, sorted({li.source_line_id for li in inputs}))
    errors: dict[str, str] = {}
    for i, li in enumerate(inputs):
        src = sources.get(li.source_line_id)
        if src is None:
            raise NotFoundError(resource=f"{source_code} line", resource_id=li.source_line_id)
        key = f"lines[{i}].source_line_id"
        if src.header.project_id != project_id or src.header.discipline_id != discipline_id:
            errors[key] = f"{source_code} line {src.id} belongs to another project or discipline"
        elif src.status != WorkflowStatus.APPROVED.value:
            errors[key] = f"{source_code} line {src.id} is '{src.status}', not Approved"
    if errors:
        raise ValidationError(f"Invalid {source_code} line references", details=errors)

    assert_within_backlog(
        source_code,
        [(sources[li.source_line_id], li.quantity) for li in inputs],
        exclude_header_id=exclude_header_id,
    )

    lines = []
    for li in inputs:
        src = sources[li.source_line_id]
        if issubclass(tier.line_model, DocumentLine):
            lines.append(tier.line_model(
                source_line_id=src.id,
                quantity=li.quantity,
                unit_price=li.unit_price if li.unit_price is not None else src.unit_price,
                material_description=li.material_description or src.material_description,
            ))
        else:
            lines.append(tier.line_model(source_line_id=src.id, quantity=li.quantity))
    return lines


def build_lines(
    doc_code: str,
    tenant_id: int,
    project_id: int,
    discipline_id: int,
    inputs: list[LineInput],
    *,
    exclude_header_id: int | None = None,
) -> list:
    """Resolve parsed inputs into unsaved line objects for ``doc_code``.

    ``exclude_header_id`` leaves a document's own current lines out of the
    backlog computation (used when revising).

    Raises:
        NotFoundError: unknown item or upstream line in this tenant.
        ValidationError: missing references, wrong project/discipline,
            unapproved upstream line.
        QuantityExceededError: backlog overrun.
    """
    tier = TIERS[doc_code]
    if tier.source_code is None:
        return _build_mtf_lines(tier, tenant_id, inputs)
    return _build_downstream_lines(tier, tenant_id, project_id, discipline_id, inputs, exclude_header_id)
