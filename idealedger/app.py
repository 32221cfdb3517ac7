from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from idealedger import services
from idealedger.config import Settings, configure_logging, get_settings
from idealedger.db import dispose_db, init_db, session_generator
from idealedger.errors import AuthenticationError, InternalError, LedgerError
from idealedger.models import User
from idealedger.roles import TERM_FIELDS
from idealedger.schemas import (
    AuthResponse,
    IdeaCreate,
    IdeaOut,
    IdeaUpdate,
    LoginRequest,
    MemberCreate,
    MemberOut,
    ProfileUpdate,
    RosterOut,
    SignupRequest,
    UserOut,
)
from idealedger.security import create_access_token, decode_access_token

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    init_db(settings.DATABASE_URL)
    yield
    dispose_db()


app = FastAPI(
    title="Idealedger",
    version="0.1.0",
    description=(
        "Register ideas and share ownership with collaborators. "
        "Tracks each participant's role, equity, debt or contract terms per idea. "
        "All endpoints except signup and login require a bearer token."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Sign up and log in to obtain a bearer token."},
        {"name": "Users", "description": "The caller's own profile."},
        {"name": "Ideas", "description": "Create, browse, and update ideas."},
        {"name": "Roles", "description": "Manage an idea's team and their stakes."},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        log.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": "validation_error", "message": details})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    log.exception("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=InternalError("Storage failure").to_dict())


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(db_session),
    settings: Settings = Depends(get_settings),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Unauthorized")
    user_id = decode_access_token(credentials.credentials, settings)
    return services.resolve_user(session, user_id)


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------


@app.get("/")
async def root():
    return {"status": "ok", "message": "Idealedger backend running"}


# ---------------------------------------------------------------------------
# Routes: Auth & Users
# ---------------------------------------------------------------------------


@app.post("/api/auth/signup", response_model=AuthResponse, status_code=201,
          tags=["Auth"], summary="Create an account and return a bearer token")
async def signup(body: SignupRequest, session: Session = Depends(db_session),
                 settings: Settings = Depends(get_settings)):
    user = services.signup(session, body.email or "", body.password or "", body.name or "")
    return {"user": services.user_summary(user), "token": create_access_token(user.id, settings)}


@app.post("/api/auth/login", response_model=AuthResponse,
          tags=["Auth"], summary="Exchange email and password for a bearer token")
async def login(body: LoginRequest, session: Session = Depends(db_session),
                settings: Settings = Depends(get_settings)):
    user = services.authenticate(session, body.email or "", body.password or "")
    return {"user": services.user_summary(user), "token": create_access_token(user.id, settings)}


@app.get("/api/users/me", response_model=UserOut, tags=["Users"], summary="Get the caller's profile")
async def get_me(user: User = Depends(current_user)):
    return services.user_summary(user)


@app.put("/api/users/me", response_model=UserOut,
         tags=["Users"], summary="Update name, skills, interests, and portfolio (email is immutable)")
async def update_me(body: ProfileUpdate, user: User = Depends(current_user),
                    session: Session = Depends(db_session)):
    services.update_profile(session, user, body.model_dump(exclude_unset=True))
    return services.user_summary(user)


# ---------------------------------------------------------------------------
# Routes: Ideas
# ---------------------------------------------------------------------------


@app.get("/api/ideas", response_model=list[IdeaOut],
         tags=["Ideas"], summary="List ideas the caller holds a role on, newest first")
async def list_ideas(user: User = Depends(current_user), session: Session = Depends(db_session)):
    return services.list_ideas_for_user(session, user.id)


@app.post("/api/ideas", response_model=IdeaOut, status_code=201,
          tags=["Ideas"], summary="Create an idea owned by the caller")
async def create_idea(body: IdeaCreate, user: User = Depends(current_user),
                      session: Session = Depends(db_session)):
    return services.create_idea(session, user.id, **body.model_dump())


@app.get("/api/ideas/{idea_id}", response_model=IdeaOut,
         tags=["Ideas"], summary="Get one idea with the caller's role and team size")
async def get_idea(idea_id: str, user: User = Depends(current_user),
                   session: Session = Depends(db_session), settings: Settings = Depends(get_settings)):
    return services.get_idea(session, idea_id, user.id, public_readable=settings.PUBLIC_IDEAS_READABLE)


@app.put("/api/ideas/{idea_id}", response_model=IdeaOut,
         tags=["Ideas"], summary="Update idea fields (owners and equity owners only; null fields ignored)")
async def update_idea(idea_id: str, body: IdeaUpdate, user: User = Depends(current_user),
                      session: Session = Depends(db_session)):
    return services.update_idea(session, idea_id, user.id, body.model_dump())


# ---------------------------------------------------------------------------
# Routes: Roles
# ---------------------------------------------------------------------------


@app.get("/api/ideas/{idea_id}/roles", response_model=RosterOut,
         tags=["Roles"], summary="List team members with their stakes")
async def list_roles(idea_id: str, user: User = Depends(current_user),
                     session: Session = Depends(db_session)):
    return services.list_members(session, idea_id, user.id)


@app.post("/api/ideas/{idea_id}/roles", response_model=MemberOut, status_code=201,
          tags=["Roles"], summary="Add a team member by email with a role and its terms")
async def add_role(idea_id: str, body: MemberCreate, user: User = Depends(current_user),
                   session: Session = Depends(db_session)):
    details = {field: getattr(body, field) for field in TERM_FIELDS}
    return services.add_member(session, idea_id, user.id, body.email, body.role, details)


@app.delete("/api/ideas/{idea_id}/roles/{user_id}",
            tags=["Roles"], summary="Remove a team member (the idea owner cannot be removed)")
async def remove_role(idea_id: str, user_id: str, user: User = Depends(current_user),
                      session: Session = Depends(db_session)):
    services.remove_member(session, idea_id, user.id, user_id)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("idealedger.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
