"""
认证相关Schema
"""
from pydantic import BaseModel


class CurrentUser(BaseModel):
    """已通过 token 校验的调用方"""
    id: str
