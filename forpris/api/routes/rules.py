"""Compliance rule management routes."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from forpris.api.deps import get_database
from forpris.compliance.errors import RuleConfigurationError
from forpris.compliance.models import RuleType
from forpris.compliance.rules import RuleDefinition, parse_rule_type
from forpris.compliance.settings import initialize_default_rules
from forpris.db.models import ComplianceRule

router = APIRouter(prefix="/api/rules", tags=["rules"])

_PARAMETER_FOR_TYPE = {
    RuleType.REFERENCE_PRICE: "lookback_days",
    RuleType.SALE_DURATION: "max_sale_days",
    RuleType.SALE_FREQUENCY: "min_gap_days",
}


class RuleCreate(BaseModel):
    country_code: str = "NO"
    rule_type: str
    parameters: dict = {}
    description: str | None = None
    active: bool = True


class RuleResponse(BaseModel):
    id: int
    country_code: str
    rule_type: str
    parameters: dict
    description: str | None
    active: bool

    model_config = ConfigDict(from_attributes=True)


class RuleUpdate(BaseModel):
    rule_type: str | None = None
    parameters: dict | None = None
    description: str | None = None
    active: bool | None = None


def _validated(rule_type: str, parameters: dict) -> RuleType:
    """Normalise the rule type and check its parameters, or raise 422."""
    try:
        parsed = parse_rule_type(rule_type)
        definition = RuleDefinition(rule_type=parsed, parameters=parameters)
        getattr(definition, _PARAMETER_FOR_TYPE[parsed])
    except RuleConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return parsed


@router.get("", response_model=List[RuleResponse])
async def list_rules(country_code: str | None = None, db: AsyncSession = Depends(get_database)):
    """List rules, optionally for one country."""
    query = select(ComplianceRule).order_by(
        ComplianceRule.country_code.asc(), ComplianceRule.rule_type.asc()
    )
    if country_code:
        query = query.where(ComplianceRule.country_code == country_code.upper())
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=RuleResponse, status_code=201)
async def create_rule(rule_data: RuleCreate, db: AsyncSession = Depends(get_database)):
    """Create a new rule."""
    rule_type = _validated(rule_data.rule_type, rule_data.parameters)

    rule = ComplianceRule(
        country_code=rule_data.country_code.upper(),
        rule_type=rule_type.value,
        parameters=rule_data.parameters,
        description=rule_data.description,
        active=rule_data.active,
    )

    db.add(rule)
    await db.commit()
    await db.refresh(rule)

    return rule


@router.post("/defaults")
async def create_default_rules(country_code: str = "NO", db: AsyncSession = Depends(get_database)):
    """Create the registered default rules for a country if none exist."""
    created = await initialize_default_rules(db, country_code)
    await db.commit()
    if created:
        return {"success": True, "message": "Default rules created", "created": created}
    return {"success": True, "message": "Rules already exist", "created": 0}


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: int, db: AsyncSession = Depends(get_database)):
    """Get a rule by ID."""
    rule = await db.get(ComplianceRule, rule_id)

    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")

    return rule


@router.patch("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: int,
    rule_data: RuleUpdate,
    db: AsyncSession = Depends(get_database),
):
    """Update a rule."""
    rule = await db.get(ComplianceRule, rule_id)

    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")

    rule_type = _validated(
        rule_data.rule_type if rule_data.rule_type is not None else rule.rule_type,
        rule_data.parameters if rule_data.parameters is not None else rule.parameters,
    )
    rule.rule_type = rule_type.value

    if rule_data.parameters is not None:
        rule.parameters = rule_data.parameters
    if rule_data.description is not None:
        rule.description = rule_data.description
    if rule_data.active is not None:
        rule.active = rule_data.active

    await db.commit()
    await db.refresh(rule)

    return rule


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: int, db: AsyncSession = Depends(get_database)):
    """Delete a rule."""
    rule = await db.get(ComplianceRule, rule_id)

    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")

    await db.execute(delete(ComplianceRule).where(ComplianceRule.id == rule_id))
    await db.commit()

    return None
