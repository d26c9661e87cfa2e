from __future__ import annotations

import logging
import math
import re
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from errors import ConsistencyError, NotFoundError, ValidationError
from filters import TransactionFilters
from models import Category, Group, GroupMember, Role, Transaction, User
from schemas import (
    DATE_FORMAT,
    CategoryDeleteIn,
    CategoryIn,
    GroupDeleteIn,
    GroupIn,
    GroupMembersIn,
    LoginIn,
    RegisterIn,
    TransactionBulkDeleteIn,
    TransactionDeleteIn,
    TransactionIn,
    UserDeleteIn,
)
from tokens import Claims, TokenCodec

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

EMAIL_PATTERN = re.compile(r"^\w+([\.-]?\w+)*@\w+([\.-]?\w+)*(\.\w{2,3})+$")


def _is_blank(value: object) -> bool:
    return str(value).strip() == ""


def _parse_id(raw: str) -> Optional[int]:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def oldest_category(session: Session) -> Optional[Category]:
    return session.scalar(select(Category).order_by(Category.id).limit(1))


def reconcile_orphaned_transactions(session: Session) -> int:
    """Reassign transactions whose type matches no category to the oldest one."""
    survivor = oldest_category(session)
    if survivor is None:
        return 0
    result = session.execute(
        update(Transaction)
        .where(Transaction.type.not_in(select(Category.type)))
        .values(type=survivor.type)
        .execution_options(synchronize_session="fetch")
    )
    session.commit()
    return result.rowcount or 0


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, username: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.username == username))

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def list_all(self) -> list[User]:
        return self.session.scalars(select(User).order_by(User.id)).all()

    def register(self, data: RegisterIn, role: Role = Role.regular) -> User:
        if data.username is None or data.email is None or data.password is None:
            raise ValidationError("Some attributes are missing!")
        if (
            _is_blank(data.username)
            or _is_blank(data.email)
            or _is_blank(data.password)
        ):
            raise ValidationError("Cannot insert an empty string!")
        if not EMAIL_PATTERN.match(data.email):
            raise ValidationError("Email not valid")
        if self.get_by_email(data.email):
            raise ValidationError("Email is already used")
        if self.get(data.username):
            raise ValidationError("Username is already used")

        user = User(
            username=data.username,
            email=data.email,
            password=pwd_context.hash(data.password),
            role=role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: username={user.username} role={role.value}")
        return user

    def login(self, data: LoginIn, codec: TokenCodec) -> tuple[str, str]:
        if data.email is None or data.password is None:
            raise ValidationError("Some attributes are missing!")
        if _is_blank(data.email) or _is_blank(data.password):
            raise ValidationError("Cannot insert an empty string!")
        if not EMAIL_PATTERN.match(data.email):
            raise ValidationError("Email not valid")
        user = self.get_by_email(data.email)
        if not user:
            raise NotFoundError("Please you need to register")
        if not pwd_context.verify(data.password, user.password):
            raise ValidationError("Wrong Password!")

        claims = Claims(
            id=user.id, username=user.username, email=user.email, role=user.role.value
        )
        access_token = codec.issue_access(claims)
        refresh_token = codec.issue_refresh(claims)
        user.refresh_token = refresh_token
        self.session.commit()
        return access_token, refresh_token

    def logout(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            raise ValidationError("Refresh Token not found")
        user = self.session.scalar(
            select(User).where(User.refresh_token == refresh_token)
        )
        if not user:
            raise NotFoundError("User not found")
        user.refresh_token = None
        self.session.commit()

    def delete(self, data: UserDeleteIn) -> dict[str, object]:
        """Remove a Regular user with their transactions and group membership.

        A group left without members is deleted as well.
        """
        if data.email is None:
            raise ValidationError("Attribute email is missing!")
        if _is_blank(data.email):
            raise ValidationError("Email is an empty string!")
        if not EMAIL_PATTERN.match(data.email):
            raise ValidationError("Email is not valid!")
        user = self.get_by_email(data.email)
        if not user:
            raise NotFoundError("User not found!")
        if user.role == Role.admin:
            raise ValidationError("Cannot delete other admins")

        try:
            deleted_transactions = self.session.execute(
                delete(Transaction)
                .where(Transaction.username == user.username)
                .execution_options(synchronize_session="fetch")
            ).rowcount
            memberships = self.session.scalars(
                select(GroupMember).where(GroupMember.email == user.email)
            ).all()
            for membership in memberships:
                group = membership.group
                if len(group.members) == 1:
                    self.session.delete(group)
                else:
                    group.members.remove(membership)
            self.session.delete(user)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"user_delete_failed: email={data.email}")
            raise
        logger.info(
            f"user_deleted: username={user.username} "
            f"transactions={deleted_transactions} groups={len(memberships)}"
        )
        return {
            "deletedTransactions": deleted_transactions or 0,
            "deletedFromGroup": bool(memberships),
        }


def group_payload(group: Group) -> dict[str, object]:
    return {
        "name": group.name,
        "members": [{"email": member.email} for member in group.members],
    }


def _check_emails(emails: list[str]) -> None:
    if any(not EMAIL_PATTERN.match(email) for email in emails):
        raise ValidationError("One or more emails are invalid!")


class GroupService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, name: str) -> Optional[Group]:
        return self.session.scalar(
            select(Group)
            .options(selectinload(Group.members))
            .where(Group.name == name)
        )

    def list_all(self) -> list[Group]:
        stmt = select(Group).options(selectinload(Group.members)).order_by(Group.id)
        return self.session.scalars(stmt).all()

    def require(self, name: str, message: str = "Group not found") -> Group:
        group = self.get(name)
        if not group:
            raise NotFoundError(message)
        return group

    def _registered(self, emails: list[str]) -> set[str]:
        stmt = select(User.email).where(User.email.in_(emails))
        return set(self.session.scalars(stmt).all())

    def _grouped(self, emails: list[str]) -> set[str]:
        """Emails that already belong to some group."""
        stmt = select(GroupMember.email).where(GroupMember.email.in_(emails))
        return set(self.session.scalars(stmt).all())

    def create(self, data: GroupIn, creator_email: str) -> dict[str, object]:
        """Create a group of registered users who are not in a group yet.

        The creator always joins. Requested emails that are unknown or already
        grouped are reported back instead of failing the request.
        """
        if (data.name is None or data.member_emails is None) and data.name != "":
            raise ValidationError("Name or MemberEmails are missing!")
        if _is_blank(data.name):
            raise ValidationError("Group name is empty!")
        if len(data.member_emails) == 0:
            raise ValidationError("List of email is empty")
        if self.get(data.name):
            raise ValidationError("Group exist!")
        _check_emails(data.member_emails)
        if self._grouped([creator_email]):
            raise ValidationError("The creator is already in a group!")

        requested = list(dict.fromkeys(data.member_emails))
        registered = self._registered(requested)
        if not registered:
            raise NotFoundError("All members not exist!")
        grouped = self._grouped(requested)
        if len(grouped) == len(requested):
            raise ValidationError("All members are already in group!")
        emails = [e for e in requested if e in registered and e not in grouped]
        if not emails:
            raise ValidationError("All members not exist or are already in a group!")
        if creator_email not in emails:
            emails.insert(0, creator_email)

        group = Group(
            name=data.name,
            members=[
                GroupMember(email=email, position=position)
                for position, email in enumerate(emails)
            ],
        )
        self.session.add(group)
        self.session.commit()
        logger.info(f"group_created: name={group.name} members={len(emails)}")
        return {
            "group": group_payload(group),
            "alreadyInGroup": [e for e in requested if e in grouped],
            "membersNotFound": [e for e in requested if e not in registered],
        }

    def member_update_target(self, name: str, data: GroupMembersIn) -> Group:
        if data.emails is None:
            raise ValidationError("Attribute emails is missing!")
        return self.require(name, "Group not exist")

    def add_members(self, group: Group, emails: list[str]) -> dict[str, object]:
        if len(emails) == 0:
            raise ValidationError("Members list is empty!")
        _check_emails(emails)
        requested = list(dict.fromkeys(emails))
        registered = self._registered(requested)
        if not registered:
            raise NotFoundError("All members not exist!")
        grouped = self._grouped(requested)
        if len(grouped) == len(requested):
            raise ValidationError("All members are already in group!")
        joining = [e for e in requested if e in registered and e not in grouped]
        if not joining:
            raise ValidationError("All members not exist or are already in a group!")

        position = max((member.position for member in group.members), default=-1)
        for offset, email in enumerate(joining, start=1):
            group.members.append(GroupMember(email=email, position=position + offset))
        self.session.commit()
        logger.info(f"group_members_added: name={group.name} emails={joining}")
        return {
            "group": group_payload(group),
            "alreadyInGroup": [e for e in requested if e in grouped],
            "membersNotFound": [e for e in requested if e not in registered],
        }

    def remove_members(self, group: Group, emails: list[str]) -> dict[str, object]:
        """Remove members, never emptying the group: the first member stays."""
        current = [member.email for member in group.members]
        if len(current) == 1:
            raise ValidationError("Only one member in the group!")
        if len(emails) == 0:
            raise ValidationError("Members list is empty!")
        _check_emails(emails)
        requested = list(dict.fromkeys(emails))
        registered = self._registered(requested)
        if not registered:
            raise NotFoundError("All members not exist!")
        not_in_group = [e for e in requested if e in registered and e not in current]
        if len(not_in_group) == len(requested):
            raise ValidationError("All members are not in the group!")
        leaving = [e for e in requested if e in registered and e in current]
        if len(leaving) == len(current):
            leaving = [e for e in leaving if e != current[0]]
        if not leaving:
            raise ValidationError("All members cannot be removed!")

        for member in [m for m in group.members if m.email in leaving]:
            group.members.remove(member)
        self.session.commit()
        logger.info(f"group_members_removed: name={group.name} emails={leaving}")
        return {
            "group": group_payload(group),
            "notInGroup": not_in_group,
            "membersNotFound": [e for e in requested if e not in registered],
        }

    def delete(self, data: GroupDeleteIn) -> dict[str, str]:
        if data.name is None:
            raise ValidationError("Attribute name is missing!")
        if _is_blank(data.name):
            raise ValidationError("Name is an empty string")
        group = self.require(data.name, "Group not exist!")
        self.session.delete(group)
        self.session.commit()
        logger.info(f"group_deleted: name={data.name}")
        return {"message": "Group deleted successfully"}

    def member_emails(self, name: str) -> list[str]:
        return [member.email for member in self.require(name).members]

    def resolve_members(self, name: str) -> list[str]:
        """Usernames of the group's members; emails with no user are skipped."""
        emails = self.member_emails(name)
        if not emails:
            return []
        rows = self.session.execute(
            select(User.email, User.username).where(User.email.in_(emails))
        ).all()
        by_email = {row.email: row.username for row in rows}
        return [by_email[email] for email in emails if email in by_email]

    def is_member(self, name: str, email: str) -> bool:
        stmt = (
            select(func.count(GroupMember.id))
            .join(Group, GroupMember.group_id == Group.id)
            .where(Group.name == name, GroupMember.email == email)
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, type_: str) -> Optional[Category]:
        return self.session.scalar(select(Category).where(Category.type == type_))

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.id)).all()

    def create(self, data: CategoryIn) -> Category:
        if data.type is None or data.color is None:
            raise ValidationError("not enough parameters")
        if _is_blank(data.type) or _is_blank(data.color):
            raise ValidationError("Type or color are invalid")
        if self.get(data.type):
            raise ValidationError("This category already exists")
        category = Category(type=data.type, color=data.color)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, old_type: str, data: CategoryIn) -> dict[str, object]:
        if data.type is None or data.color is None:
            raise ValidationError("not enough parameters")
        if _is_blank(data.type) or _is_blank(data.color):
            raise ValidationError("Type or color are invalid")
        category = self.get(old_type)
        if not category:
            raise NotFoundError("Category not found")
        new_type = data.type
        if new_type != old_type and self.get(new_type):
            raise ValidationError("Category already exists")

        count = 0
        try:
            category.type = new_type
            category.color = data.color
            self.session.flush()
            if new_type != old_type:
                result = self.session.execute(
                    update(Transaction)
                    .where(Transaction.type == old_type)
                    .values(type=new_type)
                    .execution_options(synchronize_session="fetch")
                )
                count = result.rowcount or 0
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"category_update_failed: type={old_type}")
            raise
        logger.info(
            f"category_updated: old_type={old_type} new_type={new_type} "
            f"transactions={count}"
        )
        return {"message": "Category updated successfully", "count": count}

    def delete_many(self, data: CategoryDeleteIn) -> dict[str, object]:
        if data.types is None:
            raise ValidationError("Some attributes are missing")
        if len(data.types) == 0:
            raise ValidationError("Category list is empty")
        if any(_is_blank(type_) for type_ in data.types):
            raise ValidationError("One or more category type are not valid")

        requested = list(dict.fromkeys(data.types))
        existing = set(
            self.session.scalars(
                select(Category.type).where(Category.type.in_(requested))
            ).all()
        )
        if len(existing) < len(requested):
            raise NotFoundError("One or more category type are not valid")

        total = self.session.execute(select(func.count(Category.id))).scalar_one()
        if len(requested) == total:
            if total == 1:
                raise ValidationError("Cannot delete the last category")
            keep = oldest_category(self.session)
            requested = [type_ for type_ in requested if type_ != keep.type]

        try:
            deleted = self.session.execute(
                delete(Category)
                .where(Category.type.in_(requested))
                .execution_options(synchronize_session="fetch")
            ).rowcount
            survivor = oldest_category(self.session)
            moved = self.session.execute(
                update(Transaction)
                .where(Transaction.type.in_(requested))
                .values(type=survivor.type)
                .execution_options(synchronize_session="fetch")
            ).rowcount
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"category_delete_failed: types={requested}")
            raise
        logger.info(
            f"categories_deleted: types={requested} survivor={survivor.type} "
            f"transactions={moved}"
        )
        return {"message": "Categories deleted", "count": deleted}


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, transaction_id: int) -> Optional[Transaction]:
        return self.session.get(Transaction, transaction_id)

    def create(self, owner: str, data: TransactionIn) -> Transaction:
        if data.username is None or data.amount is None or data.type is None:
            raise ValidationError("not enough parameters")
        if _is_blank(data.username) or _is_blank(data.amount) or _is_blank(data.type):
            raise ValidationError("username, amount or type are invalid")
        if data.username != owner:
            raise ValidationError("route mismatch the body request")
        try:
            amount = float(data.amount)
        except ValueError as exc:
            raise ValidationError("amount is not a number") from exc
        if not math.isfinite(amount):
            raise ValidationError("amount is not a number")

        user_exists = UserService(self.session).get(data.username) is not None
        category_exists = CategoryService(self.session).get(data.type) is not None
        if not user_exists or not category_exists:
            raise NotFoundError("Username or category type does not exist")

        txn = Transaction(username=data.username, amount=amount, type=data.type)
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete_one(self, owner: str, data: TransactionDeleteIn) -> dict[str, str]:
        if UserService(self.session).get(owner) is None:
            raise NotFoundError("User not exists")
        if data.id is None:
            raise ValidationError("The attribute _id is missing!")
        if _is_blank(data.id):
            raise ValidationError("Id is empty")
        transaction_id = _parse_id(data.id)
        txn = self.get(transaction_id) if transaction_id is not None else None
        if not txn:
            raise NotFoundError("Transaction does not exist")
        if txn.username != owner:
            raise ValidationError("This is not your transaction!")
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id} username={owner}")
        return {"message": "Transaction deleted"}

    def delete_many(self, data: TransactionBulkDeleteIn) -> dict[str, str]:
        if data.ids is None:
            raise ValidationError("The attribute is missing!")
        if len(data.ids) == 0:
            raise ValidationError("Id list is empty!")
        if any(_is_blank(raw) for raw in data.ids):
            raise ValidationError("One or more IDs are empty strings!")

        parsed = {_parse_id(raw) for raw in data.ids}
        if None in parsed:
            raise NotFoundError("One or more id not found")
        found = self.session.execute(
            select(func.count(Transaction.id)).where(Transaction.id.in_(parsed))
        ).scalar_one()
        if found < len(parsed):
            raise NotFoundError("One or more id not found")

        self.session.execute(
            delete(Transaction)
            .where(Transaction.id.in_(parsed))
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        logger.info(f"transactions_deleted: count={len(parsed)}")
        return {"message": "Transactions deleted"}


class TransactionQueryService:
    """Transactions joined with their category color, with optional filters."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _joined(
        self,
        *criteria,
        filters: Optional[TransactionFilters] = None,
        include_id: bool = False,
    ) -> list[dict[str, object]]:
        stmt = (
            select(Transaction, Category.color)
            .outerjoin(Category, Category.type == Transaction.type)
            .where(*criteria)
            .order_by(Transaction.id)
        )
        if filters is not None:
            lower, upper = filters.date_bounds()
            if lower is not None:
                stmt = stmt.where(Transaction.date >= lower)
            if upper is not None:
                stmt = stmt.where(Transaction.date <= upper)
            if filters.min_amount is not None:
                stmt = stmt.where(Transaction.amount >= filters.min_amount)
            if filters.max_amount is not None:
                stmt = stmt.where(Transaction.amount <= filters.max_amount)

        rows: list[dict[str, object]] = []
        for txn, color in self.session.execute(stmt).all():
            if color is None:
                raise ConsistencyError(
                    f"Transaction {txn.id} references missing category {txn.type!r}"
                )
            row: dict[str, object] = {
                "username": txn.username,
                "amount": txn.amount,
                "type": txn.type,
                "date": txn.date.strftime(DATE_FORMAT),
                "color": color,
            }
            if include_id:
                row = {"_id": str(txn.id), **row}
            rows.append(row)
        return rows

    def _require_user(self, username: str, message: str) -> None:
        if UserService(self.session).get(username) is None:
            raise NotFoundError(message)

    def _require_category(self, type_: str) -> None:
        if CategoryService(self.session).get(type_) is None:
            raise NotFoundError("Category not found")

    def list_all(
        self, filters: Optional[TransactionFilters] = None
    ) -> list[dict[str, object]]:
        return self._joined(filters=filters, include_id=True)

    def by_user(
        self, username: str, filters: Optional[TransactionFilters] = None
    ) -> list[dict[str, object]]:
        self._require_user(username, "User passed as a route parameter not found")
        return self._joined(Transaction.username == username, filters=filters)

    def by_user_and_category(
        self,
        username: str,
        type_: str,
        filters: Optional[TransactionFilters] = None,
    ) -> list[dict[str, object]]:
        self._require_user(username, "User not found")
        self._require_category(type_)
        return self._joined(
            Transaction.username == username,
            Transaction.type == type_,
            filters=filters,
        )

    def by_group(
        self, name: str, filters: Optional[TransactionFilters] = None
    ) -> list[dict[str, object]]:
        usernames = GroupService(self.session).resolve_members(name)
        return self._joined(Transaction.username.in_(usernames), filters=filters)

    def by_group_and_category(
        self,
        name: str,
        type_: str,
        filters: Optional[TransactionFilters] = None,
    ) -> list[dict[str, object]]:
        usernames = GroupService(self.session).resolve_members(name)
        self._require_category(type_)
        return self._joined(
            Transaction.username.in_(usernames),
            Transaction.type == type_,
            filters=filters,
        )
