"""FastAPI backend: auth provider plus whole-document store."""

import logging
from datetime import datetime
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import Config
from ..models import default_document
from .security import InvalidTokenError, TokenIssuer, hash_password, verify_password
from .storage import DocumentStore, DuplicateEmailError, User, UserStore

logger = logging.getLogger(__name__)


class RegisterBody(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""


class LoginBody(BaseModel):
    email: str = ""
    password: str = ""


class UpdateNameBody(BaseModel):
    name: str = ""


class UpdatePasswordBody(BaseModel):
    password: str = ""


def create_app(
    config: Config | None = None,
    users: UserStore | None = None,
    documents: DocumentStore | None = None,
) -> FastAPI:
    """Create the backend application.

    Args:
        config: Application configuration; defaults are used if omitted.
        users: Account store; created from ``config.server.db_path`` if omitted.
        documents: Document store; created from ``config.server.db_path``
            if omitted.

    Returns:
        Configured FastAPI application.
    """
    config = config or Config()
    users = users or UserStore(config.server.db_path)
    documents = documents or DocumentStore(config.server.db_path)
    tokens = TokenIssuer(config.server.jwt_secret, config.server.token_expire_days)

    app = FastAPI(
        title="timekeep",
        description="Per-user task document store with token auth",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.config = config
    app.state.users = users
    app.state.documents = documents
    app.state.tokens = tokens

    bearer = HTTPBearer(auto_error=False)

    # ==================== Error Shape ====================

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = sorted(
            {str(err["loc"][-1]) for err in exc.errors() if err.get("loc")}
        )
        message = "Invalid request body"
        if fields:
            message += f": {', '.join(fields)}"
        return JSONResponse(status_code=400, content={"error": message})

    # ==================== Dependencies ====================

    async def current_user(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ) -> User:
        if credentials is None or not credentials.credentials:
            raise HTTPException(status_code=401, detail="Missing Authorization header")
        try:
            user_id = tokens.decode(credentials.credentials)
        except InvalidTokenError as e:
            raise HTTPException(status_code=401, detail=str(e))

        user = users.get(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    def session(user: User) -> dict[str, Any]:
        return {"user": user.public(), "token": tokens.create(user.id)}

    # ==================== Auth Routes ====================

    @app.post("/auth/register")
    async def register(body: RegisterBody) -> dict[str, Any]:
        if not body.name or not body.email or not body.password:
            raise HTTPException(
                status_code=400, detail="name, email and password are required"
            )
        try:
            user = users.create(body.name, body.email, hash_password(body.password))
        except DuplicateEmailError:
            raise HTTPException(status_code=400, detail="Email already registered")

        # Every account starts with an empty document
        documents.put(user.id, default_document().to_dict())
        return session(user)

    @app.post("/auth/login")
    async def login(body: LoginBody) -> dict[str, Any]:
        user = users.get_by_email(body.email) if body.email else None
        if user is None:
            raise HTTPException(status_code=400, detail="Account not found")
        if not verify_password(body.password, user.password_hash):
            raise HTTPException(status_code=400, detail="Wrong password")
        return session(user)

    @app.post("/auth/update-name")
    async def update_name(
        body: UpdateNameBody, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        if not body.name:
            raise HTTPException(status_code=400, detail="name is required")
        updated = users.update_name(user.id, body.name)
        return {"success": True, "user": updated.public()}

    @app.post("/auth/update-password")
    async def update_password(
        body: UpdatePasswordBody, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        if not body.password:
            raise HTTPException(status_code=400, detail="password is required")
        users.update_password_hash(user.id, hash_password(body.password))
        return {"success": True}

    @app.delete("/auth/delete")
    async def delete_account(user: User = Depends(current_user)) -> dict[str, Any]:
        users.delete(user.id)
        documents.delete(user.id)
        logger.info(f"Deleted user {user.id}")
        return {"success": True}

    # ==================== Data Routes ====================

    @app.get("/data/full")
    async def get_document(user: User = Depends(current_user)) -> dict[str, Any]:
        document = documents.get(user.id)
        if document is None:
            return default_document().to_dict()
        return document

    @app.post("/data/full")
    async def put_document(
        document: dict[str, Any] = Body(...),
        user: User = Depends(current_user),
    ) -> dict[str, Any]:
        documents.put(user.id, document)
        return {"success": True}

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers."""
        health: dict[str, Any] = {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
        }
        try:
            health["users"] = users.count()
            health["documents"] = documents.count()
        except Exception as e:
            health["status"] = "degraded"
            health["store_error"] = str(e)
        return health

    return app
