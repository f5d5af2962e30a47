from mpesa_gateway.services.idempotency import DuplicateGuard

__all__ = ['DuplicateGuard']
