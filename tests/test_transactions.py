import pytest

from database import Base, build_engine, session_factory
from errors import NotFoundError, ValidationError
from models import Category, Transaction, User
from schemas import TransactionBulkDeleteIn, TransactionDeleteIn, TransactionIn
from services import TransactionService


def make_session():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = session_factory(engine)
    session = SessionLocal()
    session.add_all(
        [
            User(username="mario", email="mario@example.com", password="x"),
            User(username="luigi", email="luigi@example.com", password="x"),
            Category(type="food", color="red"),
        ]
    )
    session.commit()
    return session


def test_create_transaction_parses_amount_and_sets_date() -> None:
    session = make_session()

    txn = TransactionService(session).create(
        "mario", TransactionIn(username="mario", amount="12.5", type="food")
    )

    assert txn.id is not None
    assert txn.username == "mario"
    assert txn.amount == 12.5
    assert txn.type == "food"
    assert txn.date is not None


@pytest.mark.parametrize(
    "data, message",
    [
        (TransactionIn(amount=1, type="food"), "not enough parameters"),
        (TransactionIn(username="mario", type="food"), "not enough parameters"),
        (TransactionIn(username="mario", amount=1), "not enough parameters"),
        (
            TransactionIn(username="mario", amount="", type="food"),
            "username, amount or type are invalid",
        ),
        (
            TransactionIn(username="mario", amount=1, type=" "),
            "username, amount or type are invalid",
        ),
        (
            TransactionIn(username="mario", amount="invalidAmount", type="food"),
            "amount is not a number",
        ),
        (
            TransactionIn(username="mario", amount="nan", type="food"),
            "amount is not a number",
        ),
        (
            TransactionIn(username="mario", amount="inf", type="food"),
            "amount is not a number",
        ),
        (
            TransactionIn(username="mario", amount="-Infinity", type="food"),
            "amount is not a number",
        ),
        (
            TransactionIn(username="mario", amount=float("inf"), type="food"),
            "amount is not a number",
        ),
        (
            TransactionIn(username="luigi", amount=1, type="food"),
            "route mismatch the body request",
        ),
    ],
)
def test_create_transaction_validation(data, message) -> None:
    session = make_session()

    with pytest.raises(ValidationError, match=message):
        TransactionService(session).create("mario", data)

    assert session.query(Transaction).count() == 0


def test_create_transaction_requires_known_user_and_category() -> None:
    session = make_session()

    with pytest.raises(NotFoundError, match="Username or category type does not exist"):
        TransactionService(session).create(
            "mario", TransactionIn(username="mario", amount=5, type="travel")
        )
    with pytest.raises(NotFoundError, match="Username or category type does not exist"):
        TransactionService(session).create(
            "ghost", TransactionIn(username="ghost", amount=5, type="food")
        )


def test_delete_one_twice_reports_missing_transaction() -> None:
    session = make_session()
    service = TransactionService(session)
    txn = service.create(
        "mario", TransactionIn(username="mario", amount=5, type="food")
    )

    result = service.delete_one("mario", TransactionDeleteIn(_id=str(txn.id)))
    assert result == {"message": "Transaction deleted"}

    with pytest.raises(NotFoundError, match="Transaction does not exist"):
        service.delete_one("mario", TransactionDeleteIn(_id=str(txn.id)))


def test_delete_one_rejects_other_users_transaction() -> None:
    session = make_session()
    service = TransactionService(session)
    txn = service.create(
        "luigi", TransactionIn(username="luigi", amount=5, type="food")
    )

    with pytest.raises(ValidationError, match="This is not your transaction!"):
        service.delete_one("mario", TransactionDeleteIn(_id=str(txn.id)))

    assert service.get(txn.id) is not None


@pytest.mark.parametrize(
    "data, message",
    [
        (TransactionDeleteIn(), "The attribute _id is missing!"),
        (TransactionDeleteIn(_id=" "), "Id is empty"),
        (TransactionDeleteIn(_id="not-an-id"), "Transaction does not exist"),
        (TransactionDeleteIn(_id="999"), "Transaction does not exist"),
    ],
)
def test_delete_one_validation(data, message) -> None:
    session = make_session()

    with pytest.raises(ValueError, match=message):
        TransactionService(session).delete_one("mario", data)


def test_delete_one_unknown_owner() -> None:
    session = make_session()

    with pytest.raises(NotFoundError, match="User not exists"):
        TransactionService(session).delete_one("ghost", TransactionDeleteIn(_id="1"))


def test_delete_many_is_all_or_nothing_on_validation() -> None:
    session = make_session()
    service = TransactionService(session)
    first = service.create(
        "mario", TransactionIn(username="mario", amount=1, type="food")
    )
    second = service.create(
        "luigi", TransactionIn(username="luigi", amount=2, type="food")
    )

    with pytest.raises(NotFoundError, match="One or more id not found"):
        service.delete_many(TransactionBulkDeleteIn(_ids=[str(first.id), "4242"]))
    assert session.query(Transaction).count() == 2

    result = service.delete_many(
        TransactionBulkDeleteIn(_ids=[str(first.id), str(second.id)])
    )
    assert result == {"message": "Transactions deleted"}
    assert session.query(Transaction).count() == 0


@pytest.mark.parametrize(
    "data, message",
    [
        (TransactionBulkDeleteIn(), "The attribute is missing!"),
        (TransactionBulkDeleteIn(_ids=[]), "Id list is empty!"),
        (TransactionBulkDeleteIn(_ids=["1", ""]), "One or more IDs are empty strings!"),
    ],
)
def test_delete_many_validation(data, message) -> None:
    session = make_session()

    with pytest.raises(ValidationError, match=message):
        TransactionService(session).delete_many(data)
