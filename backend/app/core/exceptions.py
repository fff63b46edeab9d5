"""
Custom Exceptions
应用级自定义异常类型

翻译服务错误按 kind 区分 (invalid_api_key / provider_error / network_error)，
调用方据此决定如何提示用户，而不是匹配错误字符串。
"""

from __future__ import annotations

from typing import Any


class LinguaRelayError(Exception):
    """应用基础异常"""

    def __init__(self, message: str, details: Any = None):
        self.message = message
        self.details = details
        super().__init__(message)


# ========== 资源相关异常 ==========


class ResourceNotFoundError(LinguaRelayError):
    """资源未找到"""

    def __init__(self, resource_type: str, resource_id: str | None = None):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(message)
        self.resource_type = resource_type
        self.resource_id = resource_id


class PersistenceError(LinguaRelayError):
    """数据库读写失败"""

    pass


# ========== 外部服务异常 ==========


class ExternalServiceError(LinguaRelayError):
    """外部服务调用异常基类"""

    def __init__(self, service: str, message: str, details: Any = None):
        super().__init__(f"{service} error: {message}", details)
        self.service = service


class STTServiceError(ExternalServiceError):
    """转录服务 (Deepgram) 异常"""

    def __init__(self, message: str, provider: str | None = None, details: Any = None):
        super().__init__("STT", message, details)
        self.provider = provider


class TranslationServiceError(ExternalServiceError):
    """翻译服务异常基类"""

    kind = "translation_error"

    def __init__(self, message: str, provider: str | None = None, details: Any = None):
        super().__init__("Translation", message, details)
        self.provider = provider
        # 原始的供应商错误信息，不带 "Translation error:" 前缀
        self.provider_message = message


class InvalidAPIKeyError(TranslationServiceError):
    """供应商返回 401/403"""

    kind = "invalid_api_key"

    def __init__(self, provider: str | None = None, details: Any = None):
        label = provider or "provider"
        super().__init__(
            f"Invalid API key. Please check your {label} API key in Settings.",
            provider=provider,
            details=details,
        )


class TranslationProviderError(TranslationServiceError):
    """供应商返回了错误响应，保留其原始信息"""

    kind = "provider_error"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ):
        super().__init__(message, provider=provider, details=details)
        self.status_code = status_code


class TranslationNetworkError(TranslationServiceError):
    """网络层失败 (连接失败、超时)"""

    kind = "network_error"

    def __init__(self, provider: str | None = None, details: Any = None):
        super().__init__(
            "Translation failed. Please check your connection and try again.",
            provider=provider,
            details=details,
        )


# ========== WebSocket 异常 ==========


class WebSocketError(LinguaRelayError):
    """WebSocket 异常基类"""

    pass


class WebSocketSendError(WebSocketError):
    """WebSocket 发送失败"""

    pass


# ========== 配置异常 ==========


class ConfigurationError(LinguaRelayError):
    """配置错误"""

    pass


class MissingConfigError(ConfigurationError):
    """缺少必需配置"""

    def __init__(self, config_key: str):
        super().__init__(f"Missing required configuration: {config_key}")
        self.config_key = config_key


# ========== 验证异常 ==========


class ValidationError(LinguaRelayError):
    """验证错误"""

    def __init__(self, field: str, message: str):
        super().__init__(f"Validation error for '{field}': {message}")
        self.field = field
