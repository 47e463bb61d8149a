"""
Authentication and document scope authorization
"""

from .jwt import (
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    TokenPayload,
    verify_token,
    generate_access_token,
    generate_refresh_token,
    generate_tokens,
    decode_token,
)
from .scope import (
    Action,
    ScopePolicy,
    compare_scopes,
    is_authorized,
)
from .gate import (
    INSUFFICIENT_SCOPE,
    PreAuthorization,
    PostAuthorization,
    ScopeVerification,
    resolve_action,
    verify_scope,
    verify_scope_by_id,
    pre_authorize,
    post_authorize,
    enforce_pre,
    enforce_post,
    enforce_post_one,
)

__all__ = [
    "ACCESS_TOKEN",
    "REFRESH_TOKEN",
    "TokenPayload",
    "verify_token",
    "generate_access_token",
    "generate_refresh_token",
    "generate_tokens",
    "decode_token",
    "Action",
    "ScopePolicy",
    "compare_scopes",
    "is_authorized",
    "INSUFFICIENT_SCOPE",
    "PreAuthorization",
    "PostAuthorization",
    "ScopeVerification",
    "resolve_action",
    "verify_scope",
    "verify_scope_by_id",
    "pre_authorize",
    "post_authorize",
    "enforce_pre",
    "enforce_post",
    "enforce_post_one",
]
