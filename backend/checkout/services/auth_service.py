"""
认证服务：只校验上游签发的 JWT，登录/注册不在本服务
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from checkout.core.config import settings
from checkout.core.exceptions import AuthenticationRequired
from checkout.schemas.auth import CurrentUser


class AuthService:
    """认证服务类"""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret_key = secret_key or settings.JWT_SECRET_KEY
        self.algorithm = algorithm or settings.JWT_ALGORITHM

    def create_access_token(self, user_id: str, expires_delta: Optional[timedelta] = None) -> str:
        """签发访问令牌（运维脚本与测试使用）"""
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
        expire = datetime.now(timezone.utc) + expires_delta
        return jwt.encode({"sub": user_id, "exp": expire}, self.secret_key, algorithm=self.algorithm)

    def get_current_user(self, token: Optional[str]) -> CurrentUser:
        """解析令牌得到当前用户，令牌缺失、无效或过期一律视为未登录"""
        if not token:
            raise AuthenticationRequired("缺少访问令牌")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise AuthenticationRequired(f"无效的认证凭据: {e}") from e
        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationRequired("令牌缺少 sub")
        return CurrentUser(id=str(user_id))
