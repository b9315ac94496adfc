"""Account API routes. The logged-in account id lives in the session cookie."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from codedrop.dependencies import SESSION_USER_KEY, get_account_service, require_user_id
from codedrop.schemas.account import AccountResponse, Credentials
from codedrop.schemas.common import MessageResponse
from codedrop.services.accounts import AccountService
from codedrop.services.errors import (
    InvalidAccountInput,
    InvalidCredentials,
    StorageUnavailable,
    UsernameTaken,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/signup", response_model=MessageResponse, status_code=201)
async def signup(body: Credentials, accounts: AccountService = Depends(get_account_service)):
    """Create an account. The caller logs in separately."""
    try:
        await accounts.register(body.username, body.password)
    except InvalidAccountInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UsernameTaken as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageUnavailable:
        raise HTTPException(status_code=503, detail="Signup failed")
    return {"message": "Account created successfully! Please login."}


@router.post("/login", response_model=AccountResponse)
async def login(
    body: Credentials,
    request: Request,
    accounts: AccountService = Depends(get_account_service),
):
    try:
        account = await accounts.authenticate(body.username, body.password)
    except InvalidCredentials as e:
        raise HTTPException(status_code=401, detail=str(e))
    except StorageUnavailable:
        raise HTTPException(status_code=503, detail="Login failed")
    request.session[SESSION_USER_KEY] = account.id
    logger.info(f"Account {account.id} logged in")
    return AccountResponse.model_validate(account)


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=AccountResponse)
async def me(
    user_id: str = Depends(require_user_id),
    accounts: AccountService = Depends(get_account_service),
):
    """The logged-in account."""
    try:
        account = await accounts.get(user_id)
    except StorageUnavailable:
        raise HTTPException(status_code=503, detail="Auth check failed")
    if account is None:
        raise HTTPException(status_code=401, detail="User not found")
    return AccountResponse.model_validate(account)
