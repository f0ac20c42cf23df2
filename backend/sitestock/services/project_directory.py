"""SiteStock — Project directory collaborator.

Projects are administered elsewhere. The workflows only need to know whether a
project exists, what it is called, and whether a user may request for it.
"""
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.models.project import Project, ProjectMember


class ProjectDirectory:
    """Interface consumed by the stock request workflow."""

    async def project_exists(self, project_id: UUID) -> bool:
        raise NotImplementedError

    async def project_name(self, project_id: UUID) -> str | None:
        raise NotImplementedError

    async def user_has_project_access(self, user_id: UUID, project_id: UUID) -> bool:
        raise NotImplementedError


class SqlProjectDirectory(ProjectDirectory):
    """
    Directory backed by the local projects tables.
    Access: the project belongs to the caller's tenant, or the user is a member
    of it (cross-tenant collaborators).
    """

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def project_exists(self, project_id: UUID) -> bool:
        result = await self.db.execute(select(Project.id).where(Project.id == project_id))
        return result.scalar_one_or_none() is not None

    async def project_name(self, project_id: UUID) -> str | None:
        result = await self.db.execute(select(Project.name).where(Project.id == project_id))
        return result.scalar_one_or_none()

    async def user_has_project_access(self, user_id: UUID, project_id: UUID) -> bool:
        same_tenant = await self.db.execute(
            select(Project.id).where(Project.id == project_id, Project.tenant_id == self.tenant_id)
        )
        if same_tenant.scalar_one_or_none() is not None:
            return True
        membership = await self.db.execute(
            select(ProjectMember.id).where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id == user_id,
            )
        )
        return membership.scalar_one_or_none() is not None
