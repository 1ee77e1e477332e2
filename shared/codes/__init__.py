"""
Business codes carried in every response envelope.

Generic codes live here; settlement and processor codes are in
``shared.codes.payment_codes`` (6xxxx). HTTP statuses are derived from the
code in ``core.exceptions``.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # request (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # business (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006
    CONFLICT = 20007

    # admin access (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # system (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003
    CONFIGURATION_ERROR = 40004

    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
