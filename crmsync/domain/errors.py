from __future__ import annotations

from crmsync.core.errors import ConfigurationError, ExternalServiceError, TransientExternalError


# CRM


class SyncNotConfiguredError(ConfigurationError):
    code = "sync_not_configured"


class CrmAuthError(ConfigurationError):
    code = "crm_auth"


class CrmApiError(ExternalServiceError):
    code = "crm_api"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message, details={"status_code": status_code} if status_code is not None else None)
        self.status_code = status_code


class CrmRateLimitError(TransientExternalError):
    code = "crm_rate_limit"


# Google Sheets


class SheetsConfigError(ConfigurationError):
    code = "sheets_config"


class SheetsApiDisabledError(SheetsConfigError):
    code = "sheets_api_disabled"


class SheetsPermissionError(SheetsConfigError):
    code = "sheets_permission"


class SheetsNotFoundError(SheetsConfigError):
    code = "sheets_not_found"


class SheetsCredentialsError(SheetsConfigError):
    code = "sheets_credentials"


class SheetsRateLimitError(TransientExternalError):
    code = "sheets_rate_limit"
