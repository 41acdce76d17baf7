"""
zpay 签名算法（易支付协议，必须与网关逐字节一致）：
1. 排除 sign、sign_type 和空值
2. 按 key 的字节序（ASCII）从小到大排序
3. 拼接成 a=b&c=d 格式
4. 末尾直接追加密钥（无分隔符）后做 MD5，输出小写十六进制
"""
import hashlib
import hmac
from typing import Mapping, Optional

SIGN_FIELDS = frozenset({"sign", "sign_type"})
SIGN_TYPE = "MD5"


def build_sign_string(params: Mapping[str, Optional[str]]) -> str:
    """生成待签名字符串（不含密钥）"""
    pairs = [
        (key, str(value))
        for key, value in params.items()
        if key not in SIGN_FIELDS and value not in (None, "")
    ]
    pairs.sort(key=lambda kv: kv[0].encode("utf-8"))
    return "&".join(f"{k}={v}" for k, v in pairs)


def sign_params(params: Mapping[str, Optional[str]], key: str) -> str:
    """计算签名"""
    raw = build_sign_string(params) + key
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def verify_sign(params: Mapping[str, Optional[str]], key: str) -> bool:
    """用同一算法重新签名并与 params['sign'] 比较"""
    received = params.get("sign") or ""
    # 按字节比较：伪造的 sign 可能含非 ASCII 字符
    return hmac.compare_digest(received.encode("utf-8"), sign_params(params, key).encode("utf-8"))
