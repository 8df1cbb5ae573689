from datetime import datetime, timedelta
from hmac import compare_digest
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt

from shelfwatch.core.config import Settings, settings as default_settings

# OAuth2 token endpoint
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/login", auto_error=False)

ALGORITHM = "HS256"


def get_settings(request: Request) -> Settings:
    """当前应用实例的配置（create_app 注入），未注入时回退到全局配置"""
    return getattr(request.app.state, "settings", None) or default_settings


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
    cfg: Settings = default_settings,
) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=cfg.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, cfg.JWT_SECRET_KEY, algorithm=ALGORITHM)


async def authenticate_user(username: str, password: str, cfg: Settings = default_settings) -> bool:
    # Simple single-admin authentication. Credentials come from environment/config.
    if username != cfg.ADMIN_USERNAME:
        return False
    return _secret_matches(password, cfg.ADMIN_PASSWORD)


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    cfg: Settings = Depends(get_settings),
) -> str:
    """解析 Bearer JWT，返回 subject（即物品/Webhook 的 user_id）。"""
    if not cfg.AUTH_ENABLED:
        # If auth disabled, every request acts as the admin user
        return cfg.ADMIN_USERNAME

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    try:
        payload = jwt.decode(token, cfg.JWT_SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str | None = payload.get("sub")
        if not user_id:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    return user_id


async def login_for_access_token(form_data: OAuth2PasswordRequestForm, cfg: Settings = default_settings) -> dict:
    if not cfg.AUTH_ENABLED:
        raise HTTPException(status_code=400, detail="Authentication is disabled")

    valid = await authenticate_user(form_data.username, form_data.password, cfg)
    if not valid:
        raise HTTPException(status_code=401, detail="Incorrect username or password")

    access_token = create_access_token(data={"sub": form_data.username}, cfg=cfg)
    return {"access_token": access_token, "token_type": "bearer"}


def is_cron_request_authorized(request: Request) -> bool:
    """校验定时触发请求的共享密钥。

    支持两种方式：
    - Authorization: Bearer <CRON_SECRET>
    - X-Cron-Token: <CRON_SECRET>（平台调度器注入）

    未配置 CRON_SECRET 时拒绝所有请求。
    """
    secret = get_settings(request).CRON_SECRET
    if not secret:
        return False

    auth_header = request.headers.get("authorization") or ""
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials and _secret_matches(credentials.strip(), secret):
        return True

    platform_token = request.headers.get("x-cron-token")
    if platform_token and _secret_matches(platform_token, secret):
        return True

    return False


def _secret_matches(provided: str, secret: str) -> bool:
    return compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))
