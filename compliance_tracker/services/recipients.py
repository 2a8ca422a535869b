"""Recipient resolution shared by the email pipelines."""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import EmailPreference, User, UserRole, UserRoleType


logger = logging.getLogger(__name__)

NOTIFIED_ROLES = (UserRoleType.ADMIN, UserRoleType.SUPERADMIN)


async def load_company_recipients(
    session: AsyncSession,
    company_ids: Iterable[UUID],
) -> dict[UUID, set[UUID]]:
    """
    Map each company to the users who receive its compliance email.

    Company admins and superadmins are notified, and every platform
    superadmin (a superadmin role with no company) is added to every company.
    """
    company_ids = set(company_ids)
    recipients: dict[UUID, set[UUID]] = {company_id: set() for company_id in company_ids}
    if not company_ids:
        return recipients

    result = await session.execute(
        select(UserRole.user_id, UserRole.company_id, UserRole.role).where(
            or_(
                and_(UserRole.company_id.in_(company_ids), UserRole.role.in_(NOTIFIED_ROLES)),
                and_(UserRole.company_id.is_(None), UserRole.role == UserRoleType.SUPERADMIN),
            )
        )
    )

    platform_superadmins: set[UUID] = set()
    for user_id, company_id, _role in result.all():
        if company_id is None:
            platform_superadmins.add(user_id)
        else:
            recipients[company_id].add(user_id)

    for users in recipients.values():
        users.update(platform_superadmins)

    return recipients


async def load_users(
    session: AsyncSession,
    user_ids: Iterable[UUID],
) -> dict[UUID, User]:
    user_ids = set(user_ids)
    if not user_ids:
        return {}
    result = await session.execute(select(User).where(User.id.in_(user_ids)))
    return {user.id: user for user in result.scalars().all()}


async def load_preferences(
    session: AsyncSession,
    user_ids: Iterable[UUID],
) -> dict[UUID, EmailPreference]:
    """Bulk-load email preferences with a single query."""
    user_ids = set(user_ids)
    if not user_ids:
        return {}
    result = await session.execute(
        select(EmailPreference).where(EmailPreference.user_id.in_(user_ids))
    )
    return {pref.user_id: pref for pref in result.scalars().all()}
