"""Read-only lookups billing needs from the member directory and plan catalog."""

from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import NotFoundException
from src.models.member import Member
from src.models.membership_plan import MembershipPlan
from src.models.subscription import Subscription


class MemberDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def member_exists(self, organization_id: uuid.UUID, member_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(func.count())
            .select_from(Member)
            .where(Member.id == member_id, Member.organization_id == organization_id)
        )
        return (result.scalar() or 0) > 0

    async def member_by_id(self, organization_id: uuid.UUID, member_id: uuid.UUID) -> Member:
        result = await self.db.execute(
            select(Member).where(
                Member.id == member_id,
                Member.organization_id == organization_id,
            )
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFoundException(f"Member {member_id} not found")
        return member


class PlanCatalog:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def subscription_by_id(
        self, organization_id: uuid.UUID, subscription_id: uuid.UUID
    ) -> Subscription:
        result = await self.db.execute(
            select(Subscription).where(
                Subscription.id == subscription_id,
                Subscription.organization_id == organization_id,
            )
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise NotFoundException(f"Subscription {subscription_id} not found")
        return subscription

    async def plan_by_id(self, organization_id: uuid.UUID, plan_id: uuid.UUID) -> MembershipPlan:
        result = await self.db.execute(
            select(MembershipPlan).where(
                MembershipPlan.id == plan_id,
                MembershipPlan.organization_id == organization_id,
            )
        )
        plan = result.scalar_one_or_none()
        if plan is None:
            raise NotFoundException(f"Membership plan {plan_id} not found")
        return plan

    async def count_member_subscriptions(self, member_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Subscription)
            .where(Subscription.member_id == member_id)
        )
        return result.scalar() or 0
