import logging
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import REFRESHED_TOKEN_MESSAGE, AuthResult, CredentialVerifier, Scope
from config import get_settings
from database import SessionLocal
from errors import (
    AuthorizationError,
    ConsistencyError,
    NotFoundError,
    SessionExpiredError,
    ValidationError,
)
from filters import TransactionFilters
from models import Role
from scheduler import SchedulerManager
from schemas import (
    CategoryDeleteIn,
    CategoryIn,
    CategoryOut,
    GroupDeleteIn,
    GroupIn,
    GroupMembersIn,
    LoginIn,
    RegisterIn,
    TransactionBulkDeleteIn,
    TransactionDeleteIn,
    TransactionIn,
    TransactionOut,
    UserDeleteIn,
    UserOut,
)
from services import (
    CategoryService,
    GroupService,
    TransactionQueryService,
    TransactionService,
    UserService,
    group_payload,
)
from tokens import get_token_codec

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

app = FastAPI(title="Budget Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_verifier(db: Session = Depends(get_db)) -> CredentialVerifier:
    return CredentialVerifier(get_token_codec(), is_member=GroupService(db).is_member)


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(ValidationError)
@app.exception_handler(NotFoundError)
def bad_request_handler(request: Request, exc: ValueError):
    return _error(400, str(exc))


@app.exception_handler(RequestValidationError)
def invalid_body_handler(request: Request, exc: RequestValidationError):
    return _error(400, "Invalid request body")


@app.exception_handler(AuthorizationError)
def unauthorized_handler(request: Request, exc: AuthorizationError):
    return _error(401, exc.message)


@app.exception_handler(ConsistencyError)
def consistency_handler(request: Request, exc: ConsistencyError):
    logger.error(f"consistency_violation: path={request.url.path} detail={exc}")
    return _error(500, "Internal server error")


@app.exception_handler(Exception)
def internal_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return _error(500, "Internal server error")


def authorize(
    request: Request, verifier: CredentialVerifier, scope: Scope
) -> AuthResult:
    result = verifier.verify(
        request.cookies.get(ACCESS_COOKIE),
        request.cookies.get(REFRESH_COOKIE),
        scope,
    )
    if not result.authorized:
        if result.session_expired:
            raise SessionExpiredError(result.reason)
        raise AuthorizationError(result.reason or "Unauthorized")
    return result


def respond(data: Any, auth: Optional[AuthResult] = None) -> JSONResponse:
    body: dict[str, Any] = {"data": data}
    renewed = auth.renewed_access_token if auth else None
    if renewed:
        body["refreshedTokenMessage"] = REFRESHED_TOKEN_MESSAGE
        body["refreshedAccessToken"] = renewed
    response = JSONResponse(content=body)
    if renewed:
        response.set_cookie(
            ACCESS_COOKIE,
            renewed,
            max_age=get_settings().access_token_max_age,
            httponly=True,
        )
    return response


def filters_from_request(request: Request) -> TransactionFilters:
    return TransactionFilters.from_query(request.query_params)


# Auth


@app.post("/register")
def register(data: Optional[RegisterIn] = None, db: Session = Depends(get_db)):
    UserService(db).register(data or RegisterIn())
    return respond({"message": "User added succesfully"})


@app.post("/admin")
def register_admin(data: Optional[RegisterIn] = None, db: Session = Depends(get_db)):
    UserService(db).register(data or RegisterIn(), role=Role.admin)
    return respond({"message": "Admin added successfully"})


@app.post("/login")
def login(data: Optional[LoginIn] = None, db: Session = Depends(get_db)):
    settings = get_settings()
    access_token, refresh_token = UserService(db).login(
        data or LoginIn(), get_token_codec()
    )
    response = respond({"accessToken": access_token, "refreshToken": refresh_token})
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.access_token_max_age,
        httponly=True,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=settings.refresh_token_max_age,
        httponly=True,
    )
    return response


@app.get("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    UserService(db).logout(request.cookies.get(REFRESH_COOKIE))
    response = respond({"message": "User logged out"})
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return response


# Users and groups


@app.get("/users")
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    users = UserService(db).list_all()
    return respond(
        [UserOut.model_validate(u).model_dump(mode="json") for u in users], auth
    )


@app.get("/users/{username}")
def get_user(
    username: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.user(username, admin_override=True))
    user = UserService(db).get(username)
    if not user:
        raise NotFoundError("User not found")
    return respond(UserOut.model_validate(user).model_dump(mode="json"), auth)


@app.get("/groups")
def list_groups(
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    return respond([group_payload(g) for g in GroupService(db).list_all()], auth)


@app.get("/groups/{name}")
def get_group(
    name: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    group = GroupService(db).get(name)
    if not group:
        raise NotFoundError("Group does not exist!")
    auth = authorize(request, verifier, Scope.group_members(name, admin_override=True))
    return respond({"group": group_payload(group)}, auth)


@app.post("/groups")
def create_group(
    request: Request,
    data: Optional[GroupIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.simple())
    result = GroupService(db).create(data or GroupIn(), auth.claims.email)
    return respond(result, auth)


def _change_members(
    name: str,
    request: Request,
    data: Optional[GroupMembersIn],
    db: Session,
    verifier: CredentialVerifier,
    scope: Scope,
    remove: bool,
) -> JSONResponse:
    data = data or GroupMembersIn()
    groups = GroupService(db)
    group = groups.member_update_target(name, data)
    auth = authorize(request, verifier, scope)
    if remove:
        return respond(groups.remove_members(group, data.emails), auth)
    return respond(groups.add_members(group, data.emails), auth)


@app.patch("/groups/{name}/add")
def add_to_group(
    name: str,
    request: Request,
    data: Optional[GroupMembersIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    scope = Scope.group_members(name)
    return _change_members(name, request, data, db, verifier, scope, remove=False)


@app.patch("/groups/{name}/insert")
def admin_add_to_group(
    name: str,
    request: Request,
    data: Optional[GroupMembersIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    scope = Scope.admin()
    return _change_members(name, request, data, db, verifier, scope, remove=False)


@app.patch("/groups/{name}/remove")
def remove_from_group(
    name: str,
    request: Request,
    data: Optional[GroupMembersIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    scope = Scope.group_members(name)
    return _change_members(name, request, data, db, verifier, scope, remove=True)


@app.patch("/groups/{name}/pull")
def admin_remove_from_group(
    name: str,
    request: Request,
    data: Optional[GroupMembersIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    scope = Scope.admin()
    return _change_members(name, request, data, db, verifier, scope, remove=True)


@app.delete("/groups")
def delete_group(
    request: Request,
    data: Optional[GroupDeleteIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    return respond(GroupService(db).delete(data or GroupDeleteIn()), auth)


@app.delete("/users")
def delete_user(
    request: Request,
    data: Optional[UserDeleteIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    return respond(UserService(db).delete(data or UserDeleteIn()), auth)


# Categories


@app.post("/categories")
def create_category(
    request: Request,
    data: Optional[CategoryIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    category = CategoryService(db).create(data or CategoryIn())
    return respond(CategoryOut.model_validate(category).model_dump(), auth)


@app.patch("/categories/{type}")
def update_category(
    type: str,
    request: Request,
    data: Optional[CategoryIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    result = CategoryService(db).update(type, data or CategoryIn())
    return respond(result, auth)


@app.delete("/categories")
def delete_categories(
    request: Request,
    data: Optional[CategoryDeleteIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    result = CategoryService(db).delete_many(data or CategoryDeleteIn())
    return respond(result, auth)


@app.get("/categories")
def list_categories(
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.simple())
    categories = CategoryService(db).list_all()
    return respond(
        [CategoryOut.model_validate(c).model_dump() for c in categories], auth
    )


# Transactions


@app.post("/users/{username}/transactions")
def create_transaction(
    username: str,
    request: Request,
    data: Optional[TransactionIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.user(username))
    txn = TransactionService(db).create(username, data or TransactionIn())
    return respond(TransactionOut.model_validate(txn).model_dump(mode="json"), auth)


@app.get("/transactions")
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    filters = filters_from_request(request)
    return respond(TransactionQueryService(db).list_all(filters), auth)


@app.get("/transactions/users/{username}")
def admin_user_transactions(
    username: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    filters = filters_from_request(request)
    return respond(TransactionQueryService(db).by_user(username, filters), auth)


@app.get("/users/{username}/transactions")
def user_transactions(
    username: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.user(username))
    filters = filters_from_request(request)
    return respond(TransactionQueryService(db).by_user(username, filters), auth)


@app.get("/transactions/users/{username}/category/{category}")
def admin_user_category_transactions(
    username: str,
    category: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    filters = filters_from_request(request)
    rows = TransactionQueryService(db).by_user_and_category(username, category, filters)
    return respond(rows, auth)


@app.get("/users/{username}/transactions/category/{category}")
def user_category_transactions(
    username: str,
    category: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.user(username))
    filters = filters_from_request(request)
    rows = TransactionQueryService(db).by_user_and_category(username, category, filters)
    return respond(rows, auth)


@app.get("/transactions/groups/{name}")
def admin_group_transactions(
    name: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    filters = filters_from_request(request)
    return respond(TransactionQueryService(db).by_group(name, filters), auth)


@app.get("/groups/{name}/transactions")
def group_transactions(
    name: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    GroupService(db).require(name)
    auth = authorize(request, verifier, Scope.group_members(name, admin_override=True))
    filters = filters_from_request(request)
    return respond(TransactionQueryService(db).by_group(name, filters), auth)


@app.get("/transactions/groups/{name}/category/{category}")
def admin_group_category_transactions(
    name: str,
    category: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    filters = filters_from_request(request)
    rows = TransactionQueryService(db).by_group_and_category(name, category, filters)
    return respond(rows, auth)


@app.get("/groups/{name}/transactions/category/{category}")
def group_category_transactions(
    name: str,
    category: str,
    request: Request,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    GroupService(db).require(name)
    auth = authorize(request, verifier, Scope.group_members(name, admin_override=True))
    filters = filters_from_request(request)
    rows = TransactionQueryService(db).by_group_and_category(name, category, filters)
    return respond(rows, auth)


@app.delete("/users/{username}/transactions")
def delete_transaction(
    username: str,
    request: Request,
    data: Optional[TransactionDeleteIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.user(username))
    result = TransactionService(db).delete_one(username, data or TransactionDeleteIn())
    return respond(result, auth)


@app.delete("/transactions")
def delete_transactions(
    request: Request,
    data: Optional[TransactionBulkDeleteIn] = None,
    db: Session = Depends(get_db),
    verifier: CredentialVerifier = Depends(get_verifier),
):
    auth = authorize(request, verifier, Scope.admin())
    result = TransactionService(db).delete_many(data or TransactionBulkDeleteIn())
    return respond(result, auth)
