"""
应用配置：从环境变量读取配置
"""
from decimal import Decimal
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

from checkout.core.exceptions import ConfigurationError


class GatewayConfig(BaseModel):
    """zpay 网关配置，构造服务时显式注入，不在业务代码里读环境变量"""
    model_config = ConfigDict(frozen=True)

    pid: str = ""
    key: str = ""
    base_url: str = ""
    gateway_url: str = "https://zpayz.cn/submit.php"
    amount_tolerance: Decimal = Decimal("0.001")
    order_no_max_attempts: int = 5

    @property
    def notify_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/api/v1/checkout/zpay/webhook"

    @property
    def return_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/payment/success"

    def require_complete(self) -> "GatewayConfig":
        """下单/重新支付前调用：商户号、密钥、站点地址缺一不可"""
        missing = [
            name for name, value in (
                ("ZPAY_PID", self.pid),
                ("ZPAY_KEY", self.key),
                ("BASE_URL", self.base_url),
            ) if not value.strip()
        ]
        if missing:
            raise ConfigurationError(f"缺少 zpay 配置: {', '.join(missing)}")
        return self

    def require_key(self) -> str:
        """回调验签只依赖密钥"""
        if not self.key.strip():
            raise ConfigurationError("缺少 zpay 配置: ZPAY_KEY")
        return self.key


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从项目根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API配置
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "zpay 收银台"
    CORS_ORIGINS: List[str] = ["*"]

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./checkout.db"

    # zpay 网关配置（PID/KEY/BASE_URL 为空时下单接口返回配置错误）
    ZPAY_PID: str = ""
    ZPAY_KEY: str = ""
    ZPAY_GATEWAY_URL: str = "https://zpayz.cn/submit.php"
    BASE_URL: str = ""  # 站点对外地址，用于拼接 notify_url / return_url

    # 订单
    ORDER_NO_MAX_ATTEMPTS: int = 5  # 订单号冲突时的最大重试次数
    AMOUNT_TOLERANCE: Decimal = Decimal("0.001")  # 回调金额与订单金额的允许误差

    # 安全配置（只做 token 校验，登录由上游负责）
    JWT_SECRET_KEY: str = "your-jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "app.log"

    def gateway_config(self) -> GatewayConfig:
        """由当前配置生成注入给服务的网关配置"""
        return GatewayConfig(
            pid=self.ZPAY_PID,
            key=self.ZPAY_KEY,
            base_url=self.BASE_URL,
            gateway_url=self.ZPAY_GATEWAY_URL,
            amount_tolerance=self.AMOUNT_TOLERANCE,
            order_no_max_attempts=self.ORDER_NO_MAX_ATTEMPTS,
        )


# 创建全局配置实例
settings = Settings()
