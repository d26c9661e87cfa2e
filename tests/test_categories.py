import pytest
from sqlalchemy import select

from database import Base, build_engine, session_factory
from errors import NotFoundError, ValidationError
from models import Category, Transaction, User
from schemas import CategoryDeleteIn, CategoryIn
from services import CategoryService


def make_session():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = session_factory(engine)
    return SessionLocal()


def seed(session, types: list[str]) -> None:
    session.add(User(username="mario", email="mario@example.com", password="x"))
    for type_ in types:
        session.add(Category(type=type_, color=f"{type_}-color"))
        session.flush()
    session.commit()


def add_txn(session, type_: str, amount: float = 10.0) -> Transaction:
    txn = Transaction(username="mario", amount=amount, type=type_)
    session.add(txn)
    session.commit()
    return txn


def transaction_types(session) -> list[str]:
    return list(session.scalars(select(Transaction.type).order_by(Transaction.id)))


def test_create_category_returns_stored_record() -> None:
    session = make_session()

    category = CategoryService(session).create(CategoryIn(type="food", color="red"))

    assert category.type == "food"
    assert category.color == "red"
    assert [c.type for c in CategoryService(session).list_all()] == ["food"]


@pytest.mark.parametrize(
    "data, message",
    [
        (CategoryIn(color="red"), "not enough parameters"),
        (CategoryIn(type="food"), "not enough parameters"),
        (CategoryIn(type="", color="red"), "Type or color are invalid"),
        (CategoryIn(type="food", color="  "), "Type or color are invalid"),
    ],
)
def test_create_category_rejects_missing_or_empty_fields(data, message) -> None:
    session = make_session()

    with pytest.raises(ValidationError, match=message):
        CategoryService(session).create(data)


def test_create_category_rejects_duplicate_type() -> None:
    session = make_session()
    seed(session, ["food"])

    with pytest.raises(ValidationError, match="This category already exists"):
        CategoryService(session).create(CategoryIn(type="food", color="blue"))


def test_duplicate_check_is_case_sensitive() -> None:
    session = make_session()
    seed(session, ["food"])

    created = CategoryService(session).create(CategoryIn(type="Food", color="blue"))

    assert created.type == "Food"


def test_list_all_keeps_insertion_order() -> None:
    session = make_session()
    seed(session, ["zeta", "alpha", "mid"])

    assert [c.type for c in CategoryService(session).list_all()] == [
        "zeta",
        "alpha",
        "mid",
    ]


def test_rename_cascades_to_transactions() -> None:
    session = make_session()
    seed(session, ["food", "health"])
    add_txn(session, "food")
    add_txn(session, "health")
    add_txn(session, "food")

    result = CategoryService(session).update(
        "food", CategoryIn(type="groceries", color="green")
    )

    assert result == {"message": "Category updated successfully", "count": 2}
    assert transaction_types(session) == ["groceries", "health", "groceries"]
    renamed = CategoryService(session).get("groceries")
    assert renamed.color == "green"
    assert CategoryService(session).get("food") is None


def test_color_only_update_moves_no_transactions() -> None:
    session = make_session()
    seed(session, ["food"])
    add_txn(session, "food")

    result = CategoryService(session).update(
        "food", CategoryIn(type="food", color="blue")
    )

    assert result["count"] == 0
    assert CategoryService(session).get("food").color == "blue"
    assert transaction_types(session) == ["food"]


def test_update_unknown_category_fails() -> None:
    session = make_session()
    seed(session, ["food"])

    with pytest.raises(NotFoundError, match="Category not found"):
        CategoryService(session).update("ghost", CategoryIn(type="x", color="red"))


def test_update_to_existing_type_fails_without_side_effects() -> None:
    session = make_session()
    seed(session, ["food", "health"])
    add_txn(session, "food")

    with pytest.raises(ValidationError, match="Category already exists"):
        CategoryService(session).update(
            "food", CategoryIn(type="health", color="red")
        )

    assert transaction_types(session) == ["food"]


def test_delete_reassigns_transactions_to_oldest_survivor() -> None:
    session = make_session()
    seed(session, ["a", "b", "c"])
    add_txn(session, "a")
    add_txn(session, "b")
    add_txn(session, "c")

    result = CategoryService(session).delete_many(CategoryDeleteIn(types=["a", "c"]))

    assert result["count"] == 2
    assert [c.type for c in CategoryService(session).list_all()] == ["b"]
    assert transaction_types(session) == ["b", "b", "b"]


def test_deleting_every_category_keeps_the_oldest() -> None:
    session = make_session()
    seed(session, ["c1", "c2", "c3"])
    add_txn(session, "c2")
    add_txn(session, "c3")

    result = CategoryService(session).delete_many(
        CategoryDeleteIn(types=["c3", "c1", "c2"])
    )

    assert result["count"] == 2
    assert [c.type for c in CategoryService(session).list_all()] == ["c1"]
    assert transaction_types(session) == ["c1", "c1"]


def test_cannot_delete_the_last_category() -> None:
    session = make_session()
    seed(session, ["only"])

    with pytest.raises(ValidationError, match="Cannot delete the last category"):
        CategoryService(session).delete_many(CategoryDeleteIn(types=["only"]))

    assert len(CategoryService(session).list_all()) == 1


@pytest.mark.parametrize(
    "data, message",
    [
        (CategoryDeleteIn(), "Some attributes are missing"),
        (CategoryDeleteIn(types=[]), "Category list is empty"),
        (CategoryDeleteIn(types=["a", ""]), "One or more category type are not valid"),
        (
            CategoryDeleteIn(types=["a", "ghost"]),
            "One or more category type are not valid",
        ),
    ],
)
def test_delete_validation_happens_before_any_deletion(data, message) -> None:
    session = make_session()
    seed(session, ["a", "b"])

    with pytest.raises(ValueError, match=message):
        CategoryService(session).delete_many(data)

    assert [c.type for c in CategoryService(session).list_all()] == ["a", "b"]
