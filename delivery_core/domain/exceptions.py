class DomainException(Exception):
    pass


class NotFoundError(DomainException):
    pass


class OrderNotFoundError(NotFoundError):
    pass


class CourierNotFoundError(NotFoundError):
    pass


class RestaurantNotFoundError(NotFoundError):
    pass


class MenuItemNotFoundError(NotFoundError):
    pass


class InvalidTransitionError(DomainException):
    def __init__(self, current: str, requested: str, reason: str | None = None):
        self.current = current
        self.requested = requested
        message = f"Недопустимый переход: {current} -> {requested}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ForbiddenError(DomainException):
    pass


class NonCancellableError(DomainException):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Невозможно отменить: заказ уже в доставке (статус: {status})")


class AlreadyCancelledError(DomainException):
    pass


class InvalidConfirmationCodeError(DomainException):
    pass


class AlreadyAssignedError(DomainException):
    pass


class CourierUnavailableError(DomainException):
    pass


class RestaurantClosedError(DomainException):
    pass


class MenuItemUnavailableError(DomainException):
    pass


class CatalogServiceError(DomainException):
    pass


class IdentityServiceError(DomainException):
    pass


class WeatherServiceError(DomainException):
    pass


class InvalidPricingConfigError(DomainException):
    pass
