"""
GuildService - Business logic for the guild registry
====================================================

Handles:
- Creating guilds (slug derivation, owner membership)
- Lookup by id and by slug
- Updating name, description and settings
- Owner-only deletion with explicit cascade fan-out
- Ownership transfer
- Discovery search over discoverable guilds

Mutations run in a single DatabaseService transaction and emit their
domain event only after commit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from guildhall.core.database.base import utc_now
from guildhall.core.database.service import DatabaseService
from guildhall.core.validation.input_validator import InputValidator
from guildhall.database.models import Guild, GuildMembership, GuildRole, MembershipStatus
from guildhall.database.models.social.guild import (
    DESCRIPTION_COLUMN_LENGTH,
    NAME_COLUMN_LENGTH,
    SLUG_COLUMN_LENGTH,
)
from guildhall.modules.guild.permission_service import GuildPermissionService, is_owner
from guildhall.modules.guild.repository import GuildRepository, MembershipRepository
from guildhall.modules.guild.roles import role_weight
from guildhall.modules.guild.settings import GuildSettings, merge, validate_and_normalize
from guildhall.modules.guild.slug import SLUG_MAX_LENGTH, slugify
from guildhall.modules.shared.base_service import BaseService
from guildhall.modules.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from guildhall.core.config.manager import ConfigManager
    from guildhall.core.event.bus import EventBus

# Called inside the delete transaction after memberships are removed and
# before the guild row goes. Raising aborts the whole delete.
CascadeHook = Callable[["AsyncSession", str], Awaitable[None]]

SLUG_CONFLICT_MESSAGE = "Slug already in use"


class GuildService(BaseService):
    """
    Guild registry: creation, lookup, updates, deletion and discovery.

    Business Logic:
    - Slugs are derived from the name (or an explicit slug), unique forever
      and never changed afterwards
    - Creating a guild also creates the owner's APPROVED OWNER membership
    - Updates need ADMIN (owner always allowed); deletion and ownership
      transfer need the owner identity
    - Deletion fans out explicitly: memberships, then cascade hooks, then
      the guild row, all in one transaction
    - Search only ever returns discoverable guilds
    """

    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        permissions: GuildPermissionService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._permissions = permissions
        self._guild_repo = GuildRepository(self.log)
        self._membership_repo = MembershipRepository(self.log)
        self._cascade_hooks: List[CascadeHook] = []

    def register_cascade_hook(self, hook: CascadeHook) -> None:
        """Register a collaborator cleanup run on guild deletion (e.g. bounties)."""
        self._cascade_hooks.append(hook)

    # ========================================================================
    # VALIDATION HELPERS
    # ========================================================================

    def _length_limit(self, key: str, default: int, column_length: int) -> int:
        """Configured limit, never wider than the column that stores the value."""
        configured = self.get_config_int(key, default, min_value=1)
        if configured > column_length:
            self.log.warning(
                "Configured length exceeds column width; capping",
                extra={
                    "config_key": key,
                    "configured": configured,
                    "column_length": column_length,
                },
            )
            return column_length
        return configured

    def _validate_name(self, name: Any) -> str:
        max_length = self._length_limit("guilds.name_max_length", 100, NAME_COLUMN_LENGTH)
        return InputValidator.validate_string(name, "name", min_length=1, max_length=max_length)

    def _validate_description(self, description: Any) -> Optional[str]:
        max_length = self._length_limit(
            "guilds.description_max_length", 500, DESCRIPTION_COLUMN_LENGTH
        )
        value = InputValidator.validate_optional_string(
            description, "description", max_length=max_length
        )
        return value or None

    def _derive_slug(self, name: str, slug: Optional[str]) -> str:
        max_length = self._length_limit(
            "guilds.slug_max_length", SLUG_MAX_LENGTH, SLUG_COLUMN_LENGTH
        )
        if slug is not None:
            explicit = InputValidator.validate_string(slug, "slug", min_length=1)
            candidate = slugify(explicit, max_length)
            if not candidate:
                raise InvalidInputError("slug", "Must contain at least one letter, digit or hyphen")
            return candidate

        candidate = slugify(name, max_length)
        if not candidate:
            raise InvalidInputError(
                "name", "Must contain at least one letter or digit to derive a slug"
            )
        return candidate

    # ========================================================================
    # CREATE / READ
    # ========================================================================

    async def create_guild(
        self,
        name: str,
        owner_id: str,
        description: Optional[str] = None,
        slug: Optional[str] = None,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> Guild:
        """
        Create a guild and its owner membership.

        Args:
            name: Display name
            owner_id: User who becomes the OWNER
            description: Optional description
            slug: Optional explicit slug; derived from ``name`` otherwise
            settings: Optional partial settings document

        Returns:
            The committed Guild

        Raises:
            InvalidInputError: Invalid name, description, slug or settings
            ConflictError: The slug is already in use
        """
        name = self._validate_name(name)
        owner_id = InputValidator.validate_id(owner_id, "owner_id")
        description = self._validate_description(description)
        settings_document = merge(None, validate_and_normalize(settings))
        guild_slug = self._derive_slug(name, slug)

        async def work(session: AsyncSession) -> Guild:
            if await self._guild_repo.slug_exists(session, guild_slug):
                raise ConflictError(SLUG_CONFLICT_MESSAGE, details={"slug": guild_slug})

            now = utc_now()
            guild = self._guild_repo.add(
                session,
                Guild(
                    slug=guild_slug,
                    name=name,
                    description=description,
                    owner_id=owner_id,
                    settings=settings_document,
                    member_count=1,
                ),
            )

            try:
                await self._guild_repo.flush(session)
            except IntegrityError:
                # Lost a race with a concurrent create of the same slug.
                raise ConflictError(
                    SLUG_CONFLICT_MESSAGE, details={"slug": guild_slug}
                ) from None

            self._membership_repo.add(
                session,
                GuildMembership(
                    guild_id=guild.id,
                    user_id=owner_id,
                    role=GuildRole.OWNER,
                    status=MembershipStatus.APPROVED,
                    joined_at=now,
                ),
            )
            await self._membership_repo.flush(session)
            return guild

        guild = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.create",
            context={"slug": guild_slug, "user_id": owner_id},
        )

        self.log_operation(
            "create_guild", guild_id=guild.id, slug=guild.slug, user_id=owner_id
        )
        await self.emit_event(
            "guild.created",
            {"guild_id": guild.id, "slug": guild.slug, "owner_id": owner_id},
        )
        return guild

    async def _can_view(
        self, session: AsyncSession, guild: Guild, actor_id: Optional[str]
    ) -> bool:
        if GuildSettings.from_mapping(guild.settings).visibility != "private":
            return True
        if actor_id is None:
            return False
        if is_owner(guild, actor_id):
            return True
        membership = await self._membership_repo.find_for_user(session, guild.id, actor_id)
        return membership is not None and membership.status == MembershipStatus.APPROVED

    async def get_guild(self, guild_id: str, actor_id: Optional[str] = None) -> Guild:
        """
        Guild detail.

        A private guild is only visible to its owner and approved members;
        everyone else (``actor_id`` omitted included) gets NotFoundError, so
        private guilds do not reveal that they exist.
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        if actor_id is not None:
            actor_id = InputValidator.validate_id(actor_id, "actor_id")

        async with DatabaseService.get_session() as session:
            guild = await self._guild_repo.get(session, guild_id)
            visible = guild is not None and await self._can_view(session, guild, actor_id)

        if not visible:
            raise NotFoundError("Guild", guild_id)
        return guild

    async def get_guild_by_slug(self, slug: str, actor_id: Optional[str] = None) -> Guild:
        """Same visibility rules as ``get_guild``."""
        slug = InputValidator.validate_string(slug, "slug", min_length=1)
        if actor_id is not None:
            actor_id = InputValidator.validate_id(actor_id, "actor_id")

        async with DatabaseService.get_session() as session:
            guild = await self._guild_repo.find_by_slug(session, slug)
            visible = guild is not None and await self._can_view(session, guild, actor_id)

        if not visible:
            raise NotFoundError("Guild", slug)
        return guild

    # ========================================================================
    # UPDATE / DELETE
    # ========================================================================

    async def update_guild(
        self,
        guild_id: str,
        actor_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> Guild:
        """
        Update name, description and/or settings.

        ``None`` leaves a field unchanged; an empty description clears it.
        Settings are a partial update merged over the stored document. The
        slug never changes, even when the name does.

        Raises:
            NotFoundError: Guild does not exist
            ForbiddenError: Actor is neither owner nor ADMIN
            InvalidInputError: Invalid field values or unknown settings keys
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        actor_id = InputValidator.validate_id(actor_id, "actor_id")
        new_name = self._validate_name(name) if name is not None else None
        new_description = (
            self._validate_description(description) if description is not None else None
        )
        settings_changes = validate_and_normalize(settings) if settings is not None else None

        async def work(session: AsyncSession) -> tuple[Guild, List[str]]:
            guild = await self._guild_repo.get_for_update(session, guild_id)
            if guild is None:
                raise NotFoundError("Guild", guild_id)

            await self._permissions.require(
                session, guild, actor_id, GuildRole.ADMIN, "guild.update"
            )

            changed: List[str] = []
            if new_name is not None and new_name != guild.name:
                guild.name = new_name
                changed.append("name")
            if description is not None and new_description != guild.description:
                guild.description = new_description
                changed.append("description")
            if settings_changes:
                merged = merge(guild.settings, settings_changes)
                if merged != guild.settings:
                    guild.settings = merged
                    changed.append("settings")

            await self._guild_repo.flush(session)
            return guild, changed

        guild, changed = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.update",
            context={"guild_id": guild_id, "user_id": actor_id},
        )

        self.log_operation(
            "update_guild", guild_id=guild_id, user_id=actor_id, changed=changed
        )
        if changed:
            await self.emit_event(
                "guild.updated",
                {"guild_id": guild_id, "actor_id": actor_id, "changed": changed},
            )
        return guild

    async def delete_guild(self, guild_id: str, actor_id: str) -> None:
        """
        Delete a guild. Only the owner identity may do this.

        Raises:
            NotFoundError: Guild does not exist
            ForbiddenError: Actor is not the owner
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        actor_id = InputValidator.validate_id(actor_id, "actor_id")

        async def work(session: AsyncSession) -> Dict[str, Any]:
            guild = await self._guild_repo.get_for_update(session, guild_id)
            if guild is None:
                raise NotFoundError("Guild", guild_id)

            if not is_owner(guild, actor_id):
                raise ForbiddenError(
                    "guild.delete",
                    "Only the guild owner can delete the guild",
                    details={"guild_id": guild_id, "actor_id": actor_id},
                )

            removed = await self._membership_repo.delete_for_guild(session, guild_id)
            for hook in self._cascade_hooks:
                await hook(session, guild_id)

            await self._guild_repo.delete(session, guild)
            await self._guild_repo.flush(session)
            return {"slug": guild.slug, "memberships_removed": removed}

        result = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.delete",
            context={"guild_id": guild_id, "user_id": actor_id},
        )

        self.log_operation(
            "delete_guild",
            guild_id=guild_id,
            user_id=actor_id,
            memberships_removed=result["memberships_removed"],
        )
        await self.emit_event(
            "guild.deleted",
            {"guild_id": guild_id, "actor_id": actor_id, **result},
        )

    async def transfer_ownership(
        self, guild_id: str, actor_id: str, new_owner_id: str
    ) -> Guild:
        """
        Hand the guild to another approved member.

        The new owner's membership becomes OWNER and the previous owner's
        becomes ADMIN, together with ``guild.owner_id``, in one transaction.

        Raises:
            InvalidInputError: Transfer to oneself
            NotFoundError: Guild missing, or target has no APPROVED membership
            ForbiddenError: Actor is not the owner
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        actor_id = InputValidator.validate_id(actor_id, "actor_id")
        new_owner_id = InputValidator.validate_id(new_owner_id, "new_owner_id")

        if new_owner_id == actor_id:
            raise InvalidInputError("new_owner_id", "Cannot transfer ownership to yourself")

        async def work(session: AsyncSession) -> Guild:
            guild = await self._guild_repo.get_for_update(session, guild_id)
            if guild is None:
                raise NotFoundError("Guild", guild_id)

            if not is_owner(guild, actor_id):
                raise ForbiddenError(
                    "guild.transfer_ownership",
                    "Only the guild owner can transfer ownership",
                    details={"guild_id": guild_id, "actor_id": actor_id},
                )

            target = await self._membership_repo.find_for_user(
                session, guild_id, new_owner_id, for_update=True
            )
            if target is None or target.status != MembershipStatus.APPROVED:
                raise NotFoundError(
                    "Membership", new_owner_id, details={"guild_id": guild_id}
                )

            previous = await self._membership_repo.find_for_user(
                session, guild_id, actor_id, for_update=True
            )
            if previous is not None:
                previous.role = GuildRole.ADMIN

            target.role = GuildRole.OWNER
            guild.owner_id = new_owner_id
            await self._guild_repo.flush(session)
            return guild

        guild = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.transfer_ownership",
            context={"guild_id": guild_id, "user_id": actor_id},
        )

        self.log_operation(
            "transfer_ownership",
            guild_id=guild_id,
            user_id=actor_id,
            new_owner_id=new_owner_id,
        )
        await self.emit_event(
            "guild.ownership_transferred",
            {
                "guild_id": guild_id,
                "previous_owner_id": actor_id,
                "new_owner_id": new_owner_id,
            },
        )
        return guild

    # ========================================================================
    # DISCOVERY
    # ========================================================================

    async def search_guilds(
        self,
        query: Optional[str] = None,
        page: int = 0,
        size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Search discoverable guilds by name or description.

        Matching is a case-insensitive substring match; ``%`` and ``_`` in
        the query match literally. Private (non-discoverable) guilds are
        never returned, with or without a query.

        Args:
            query: Text to look for; blank or None lists all discoverable guilds
            page: Zero-based page number
            size: Page size (defaults to ``guilds.search_default_page_size``)

        Returns:
            ``{"items": [Guild, ...], "total": int, "page": int, "size": int}``
        """
        max_size = self.get_config_int("guilds.search_max_page_size", 100, min_value=1)
        if size is None:
            size = min(
                self.get_config_int("guilds.search_default_page_size", 20, min_value=1),
                max_size,
            )
        page, size = InputValidator.validate_pagination(page, size, max_size)
        text = InputValidator.validate_optional_string(query, "query", max_length=200)

        conditions = [Guild.settings["discoverable"].as_boolean().is_(True)]
        if text:
            conditions.append(
                or_(
                    Guild.name.icontains(text, autoescape=True),
                    Guild.description.icontains(text, autoescape=True),
                )
            )

        async with DatabaseService.get_session() as session:
            total = await self._guild_repo.count(session, *conditions)
            items = await self._guild_repo.find_many_where(
                session,
                *conditions,
                order_by=(Guild.name, Guild.id),
                offset=page * size,
                limit=size,
            )

        self.log.debug(
            "Guild search",
            extra={"query": text, "page": page, "size": size, "total": total},
        )
        return {"items": items, "total": total, "page": page, "size": size}

    async def list_members(
        self,
        guild_id: str,
        status: MembershipStatus = MembershipStatus.APPROVED,
    ) -> List[GuildMembership]:
        """Memberships of a guild, highest role first, then by join time."""
        guild_id = InputValidator.validate_id(guild_id, "guild_id")

        async with DatabaseService.get_session() as session:
            guild = await self._guild_repo.get(session, guild_id)
            if guild is None:
                raise NotFoundError("Guild", guild_id)
            members = await self._membership_repo.list_by_status(session, guild_id, status)

        return sorted(
            members,
            key=lambda m: (-role_weight(m.role), m.joined_at or m.created_at),
        )
