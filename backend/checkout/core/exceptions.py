"""
收银台异常定义

message 是可以直接返回给用户的简短文案，内部细节（签名串、金额等）只写日志。
"""


class CheckoutError(Exception):
    """收银台业务异常基类"""
    status_code: int = 400
    message: str = "请求处理失败"

    def __init__(self, detail: str | None = None, message: str | None = None):
        super().__init__(detail or message or self.message)
        if message is not None:
            self.message = message


class AuthenticationRequired(CheckoutError):
    status_code = 401
    message = "请先登录后再进行支付"


class ValidationError(CheckoutError):
    status_code = 400
    message = "请求参数错误"


class NotFoundError(CheckoutError):
    status_code = 404
    message = "订单不存在或已支付"


class ProductNotFound(NotFoundError):
    # 与前端约定：未知产品按参数错误处理
    status_code = 400
    message = "产品不存在"


class ConfigurationError(CheckoutError):
    """运维侧错误，对用户只返回通用提示"""
    status_code = 500
    message = "支付服务配置错误，请联系管理员"


class SignatureMismatch(CheckoutError):
    status_code = 400
    message = "签名验证失败"


class AmountMismatch(CheckoutError):
    status_code = 400
    message = "金额不匹配"


class DuplicateOrderNumber(CheckoutError):
    """订单号唯一约束冲突，由下单流程内部重试，不会返回给用户"""
    status_code = 409
    message = "订单号冲突"


class PersistenceFailure(CheckoutError):
    """数据库读写失败，调用方可以重试"""
    status_code = 500
    message = "订单处理失败，请稍后重试"
