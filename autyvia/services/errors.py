"""Error taxonomy shared by the services and the screens."""


class AppError(Exception):
    """Base class for every error the application raises on purpose."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


# --- Auth errors: surfaced verbatim as inline form messages ---

class AuthError(AppError):
    pass


class InvalidCredentialsError(AuthError):
    def __init__(self, message: str = "Invalid login credentials"):
        super().__init__(message)


class UserAlreadyRegisteredError(AuthError):
    def __init__(self, message: str = "User already registered"):
        super().__init__(message)


class WeakPasswordError(AuthError):
    def __init__(self, message: str = "Password should be at least 6 characters"):
        super().__init__(message)


# --- Backend query errors ---

class BackendError(AppError):
    pass


class RecordNotFoundError(BackendError):
    def __init__(self, table: str, key: str):
        super().__init__(f"No row in '{table}' for {key}")
        self.table = table
        self.key = key


class ProvisioningError(AppError):
    """Sign-up failed after the auth identity was created."""


class ProfileError(AppError):
    pass


# --- Generation flow ---

class QuotaExceededError(AppError):
    def __init__(self, message: str = "Monthly post limit reached"):
        super().__init__(message)


class GenerationError(AppError):
    def __init__(self, message: str = "Post generation failed, please try again"):
        super().__init__(message)


class WebhookError(GenerationError):
    pass
